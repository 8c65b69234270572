"""Format normalization: filtered views, best-first ordering and display de-duplication."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from mediagrab.models.video import VideoFormat

AUTO_CODEC = "auto"
FPS_BUCKET = 30

_DIGITS = re.compile(r"(\d+)")


class FormatView(str, Enum):
    """Tabs a client can browse formats by."""

    ALL_VIDEO = "all_video"
    VIDEO_ONLY = "video_only"
    AUDIO_ONLY = "audio_only"


def quality_to_resolution(quality: Optional[str]) -> int:
    """Map a quality label to a vertical resolution; unrecognized labels are 0."""
    if not quality:
        return 0
    upper = quality.upper()
    if "4K" in upper or "2160" in upper:
        return 2160
    if "8K" in upper or "4320" in upper:
        return 4320
    if "2K" in upper or "1440" in upper:
        return 1440
    match = _DIGITS.search(quality)
    return int(match.group(1)) if match else 0


def normalize_codec(codec: Optional[str]) -> str:
    if not codec:
        return AUTO_CODEC
    lowered = codec.lower()
    if "h264" in lowered or "avc" in lowered:
        return "H264"
    if "h265" in lowered or "hevc" in lowered:
        return "H265"
    if "vp9" in lowered:
        return "VP9"
    if "av1" in lowered or "av01" in lowered:
        return "AV1"
    return codec.upper()


def dedup_key(fmt: VideoFormat) -> str:
    fps = fmt.fps if fmt.fps and fmt.fps > FPS_BUCKET else FPS_BUCKET
    return f"{quality_to_resolution(fmt.quality)}-{fps}"


def sort_all_video(formats: Iterable[VideoFormat]) -> List[VideoFormat]:
    """Formats with video, highest resolution first; muxed before video-only, then larger first."""
    return sorted(
        (f for f in formats if f.has_video),
        key=lambda f: (-quality_to_resolution(f.quality), not f.has_audio, -(f.size or 0)),
    )


def sort_video_only(formats: Iterable[VideoFormat]) -> List[VideoFormat]:
    return sorted(
        (f for f in formats if f.has_video and not f.has_audio),
        key=lambda f: -quality_to_resolution(f.quality),
    )


def sort_audio_only(formats: Iterable[VideoFormat]) -> List[VideoFormat]:
    return sorted(
        (f for f in formats if f.has_audio and not f.has_video),
        key=lambda f: -(f.bitrate or 0),
    )


def deduplicate(formats: Iterable[VideoFormat], codec: str = AUTO_CODEC) -> List[VideoFormat]:
    """Keep the first format per (resolution, fps bucket) after an optional codec filter.

    Args:
        formats: Formats already in priority order
        codec: Normalized codec name to keep, or ``auto`` for all

    Returns:
        De-duplicated formats, order preserved
    """
    if codec and codec != AUTO_CODEC:
        formats = [f for f in formats if normalize_codec(f.codec) == codec]

    unique: List[VideoFormat] = []
    seen = set()
    for fmt in formats:
        key = dedup_key(fmt)
        if key in seen:
            continue
        seen.add(key)
        unique.append(fmt)
    return unique


def available_codecs(formats: Iterable[VideoFormat]) -> List[str]:
    """Distinct normalized codecs in first-seen order, excluding ``auto``."""
    codecs: List[str] = []
    for fmt in formats:
        codec = normalize_codec(fmt.codec)
        if codec != AUTO_CODEC and codec not in codecs:
            codecs.append(codec)
    return codecs


@dataclass
class NormalizedFormats:
    """The three sorted views plus their display subsets."""

    all_video: List[VideoFormat] = field(default_factory=list)
    video_only: List[VideoFormat] = field(default_factory=list)
    audio_only: List[VideoFormat] = field(default_factory=list)
    best_audio: Optional[VideoFormat] = None

    def view(self, name: FormatView) -> List[VideoFormat]:
        if name == FormatView.ALL_VIDEO:
            return self.all_video
        if name == FormatView.VIDEO_ONLY:
            return self.video_only
        return self.audio_only

    def display(self, name: FormatView, codec: str = AUTO_CODEC) -> List[VideoFormat]:
        """Display list for a view. Audio is shown in full, sorted by bitrate."""
        formats = self.view(name)
        if name == FormatView.AUDIO_ONLY:
            return list(formats)
        return deduplicate(formats, codec)

    def codecs(self, name: FormatView) -> List[str]:
        if name == FormatView.AUDIO_ONLY:
            return []
        return available_codecs(self.view(name))


def normalize_formats(formats: Iterable[VideoFormat]) -> NormalizedFormats:
    """Split raw formats into sorted views, dropping formats with neither video nor audio."""
    valid = [f for f in formats if f.is_valid()]
    audio_only = sort_audio_only(valid)
    return NormalizedFormats(
        all_video=sort_all_video(valid),
        video_only=sort_video_only(valid),
        audio_only=audio_only,
        best_audio=audio_only[0] if audio_only else None,
    )
