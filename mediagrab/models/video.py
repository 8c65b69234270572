"""Canonical media data models shared by every resolver."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple


class Platform(str, Enum):
    """Hosting platforms the detector can recognize.

    OTHER tags results produced for pages outside the known platforms;
    UNKNOWN is only ever returned by detection and never stored on a result.
    """

    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    TWITTER = "twitter"
    INSTAGRAM = "instagram"
    DOUYIN = "douyin"
    XIAOHONGSHU = "xiaohongshu"
    WECHAT = "wechat"
    BILIBILI = "bilibili"
    ADULT_VIDEO = "adult-video"
    OTHER = "other"
    UNKNOWN = "unknown"


def format_file_size(size: int) -> str:
    """Render a byte count as a short human-readable string (e.g. "1.5 MB")."""
    if size <= 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1

    return f"{round(value, 2):g} {units[index]}"


def format_duration(seconds: int) -> str:
    """Render seconds as M:SS or H:MM:SS."""
    seconds = max(int(seconds or 0), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


@dataclass
class VideoFormat:
    """One deliverable stream or muxed file."""

    id: str
    quality: str
    url: str
    container: str = "mp4"
    has_video: bool = True
    has_audio: bool = True
    size: Optional[int] = None  # bytes
    bitrate: Optional[int] = None  # bits per second
    codec: Optional[str] = None
    fps: Optional[int] = None
    no_watermark: Optional[bool] = None

    @property
    def size_text(self) -> Optional[str]:
        return format_file_size(self.size) if self.size else None

    @property
    def format_type(self) -> str:
        if self.has_video and self.has_audio:
            return "video+audio"
        if self.has_video:
            return "video-only"
        if self.has_audio:
            return "audio-only"
        return "invalid"

    def is_valid(self) -> bool:
        return self.has_video or self.has_audio


@dataclass
class Subtitle:
    """Subtitle track information."""

    lang: str
    label: str
    url: str
    format: str = "srt"
    is_auto_generated: bool = False


@dataclass
class VideoInfo:
    """Canonical result of one successful resolution."""

    id: str
    platform: Platform
    title: str
    original_url: str
    formats: List[VideoFormat] = field(default_factory=list)
    description: str = ""
    thumbnail: str = ""
    author: str = ""
    author_avatar: str = ""
    duration: int = 0  # seconds
    subtitles: Optional[List[Subtitle]] = None
    images: Optional[List[str]] = None
    parsed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_in: Optional[int] = None  # seconds until contained URLs go stale

    @property
    def duration_text(self) -> str:
        return format_duration(self.duration) if self.duration else ""

    @property
    def identity(self) -> Tuple[str, str]:
        """Canonical identity used to detect duplicate resolutions."""
        return (self.platform.value, self.id)


@dataclass
class ResolveResult:
    """Outcome of a resolver or of the whole chain.

    Exactly one of ``data`` (on success) or ``error`` (on failure) is set.
    """

    success: bool
    data: Optional[VideoInfo] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, info: VideoInfo) -> "ResolveResult":
        return cls(success=True, data=info)

    @classmethod
    def failure(cls, reason: str) -> "ResolveResult":
        return cls(success=False, error=reason)
