"""Data models for the application."""

from mediagrab.models.job import (
    DownloadAction,
    DownloadJob,
    DownloadRoute,
    RemoteJobState,
    RemoteTaskStatus,
    TrimRange,
)
from mediagrab.models.video import (
    Platform,
    ResolveResult,
    Subtitle,
    VideoFormat,
    VideoInfo,
    format_duration,
    format_file_size,
)

__all__ = [
    "DownloadAction",
    "DownloadJob",
    "DownloadRoute",
    "RemoteJobState",
    "RemoteTaskStatus",
    "TrimRange",
    "Platform",
    "ResolveResult",
    "Subtitle",
    "VideoFormat",
    "VideoInfo",
    "format_duration",
    "format_file_size",
]
