"""Input validation and delivery naming helpers.

URL scheme checks for inbound requests, output filename sanitizing and
content-type/disposition derivation for streamed downloads.
"""

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional
from urllib.parse import quote, urlparse

import structlog

logger = structlog.get_logger(__name__)


class AudioFormat(str, Enum):
    """Audio containers the remote service can extract to."""

    MP3 = "mp3"
    M4A = "m4a"
    WAV = "wav"
    AAC = "aac"
    OPUS = "opus"
    FLAC = "flac"


AUDIO_CONTENT_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "aac": "audio/aac",
    "m4a": "audio/mp4",
}

DEFAULT_VIDEO_CONTENT_TYPE = "video/mp4"

# Letters (Latin and CJK unified ideographs), digits, underscore, dot, hyphen.
_UNSAFE_FILENAME_CHARS = re.compile(r"[^\u4e00-\u9fa5a-zA-Z0-9_.\-]")
_TRAILING_SEPARATORS = re.compile(r"[._]+$")
_EXTENSION = re.compile(r"\.[^.]+$")


@dataclass(frozen=True)
class ValidationResult:
    """Result of a validation operation."""

    is_valid: bool
    error_message: Optional[str] = None
    sanitized_value: Optional[str] = None


class URLValidator:
    """Validates that a URL is an absolute http(s) URL with a host."""

    DANGEROUS_SCHEMES: FrozenSet[str] = frozenset({"javascript", "data", "file", "vbscript", "about"})

    def validate(self, url: str) -> ValidationResult:
        """Validate a URL.

        Args:
            url: URL to validate

        Returns:
            ValidationResult with validation status and any error message
        """
        if not url or not isinstance(url, str) or not url.strip():
            return ValidationResult(is_valid=False, error_message="URL is required")

        url = url.strip()
        try:
            parsed = urlparse(url)
        except ValueError as e:
            logger.debug("url_parse_failed", url=url, error=str(e))
            return ValidationResult(is_valid=False, error_message="Invalid URL format")

        scheme = (parsed.scheme or "").lower()
        if scheme in self.DANGEROUS_SCHEMES:
            logger.warning("dangerous_url_scheme", url=url, scheme=scheme)
            return ValidationResult(is_valid=False, error_message=f"URL scheme '{scheme}' is not allowed")
        if scheme not in ("http", "https"):
            return ValidationResult(is_valid=False, error_message="URL must use http or https scheme")
        if not parsed.hostname:
            return ValidationResult(is_valid=False, error_message="URL must include a valid domain")

        return ValidationResult(is_valid=True, sanitized_value=url)

    def is_valid(self, url: str) -> bool:
        return self.validate(url).is_valid


url_validator = URLValidator()


def sanitize_filename(name: str) -> str:
    """Restrict a filename to a safe character set and trim trailing separators."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name or "")
    return _TRAILING_SEPARATORS.sub("", cleaned)


def default_filename(now: Optional[float] = None) -> str:
    timestamp = int((now if now is not None else time.time()) * 1000)
    return f"video_{timestamp}.mp4"


def output_filename(filename: str, extract_audio: bool = False, audio_format: str = "mp3") -> str:
    """Derive the delivered filename.

    Args:
        filename: Requested filename, may be empty.
        extract_audio: Whether the output is an extracted audio track.
        audio_format: Audio container used when extracting audio.

    Returns:
        Sanitized filename, with the extension rewritten for audio extraction.
    """
    name = sanitize_filename(filename) or default_filename()
    if extract_audio:
        if _EXTENSION.search(name):
            name = _EXTENSION.sub(f".{audio_format}", name)
        else:
            name = f"{name}.{audio_format}"
    return name


def audio_content_type(audio_format: str) -> str:
    fmt = (audio_format or "mp3").lower()
    return AUDIO_CONTENT_TYPES.get(fmt, f"audio/{fmt}")


def content_type_for(extract_audio: bool, audio_format: str = "mp3") -> str:
    return audio_content_type(audio_format) if extract_audio else DEFAULT_VIDEO_CONTENT_TYPE


def content_disposition(filename: str) -> str:
    """Build an RFC 5987 attachment header value for a possibly non-ASCII filename."""
    return f"attachment; filename*=UTF-8''{quote(filename, safe='')}"
