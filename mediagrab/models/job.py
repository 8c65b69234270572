"""Download job models.

A DownloadJob lives only for the duration of one download request. When it is
delegated to the remote transcoding service, the remote task is tracked by the
polling loop only and never stored locally.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DownloadAction(str, Enum):
    """Operation requested for a download."""

    DOWNLOAD = "download"
    MERGE = "merge"
    TRIM = "trim"
    EXTRACT_AUDIO = "extract-audio"


class DownloadRoute(str, Enum):
    """How the orchestrator delivers the bytes."""

    DIRECT = "direct"
    REMOTE = "remote"


class RemoteTaskStatus(str, Enum):
    """Status reported by the remote transcoding service.

    State transitions:
    - PENDING -> PROCESSING: When the remote worker picks up the task
    - PROCESSING -> DONE: When the produced file is ready
    - PENDING/PROCESSING -> ERROR: When the remote tool fails
    """

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"

    @classmethod
    def parse(cls, value: Any) -> "RemoteTaskStatus":
        """Map an arbitrary status string, treating anything unknown as in-progress."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.PROCESSING


class RemoteJobState(str, Enum):
    """States of the local submit/poll/fetch state machine."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    DONE = "done"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self in (
            RemoteJobState.DONE,
            RemoteJobState.ERROR,
            RemoteJobState.TIMED_OUT,
            RemoteJobState.CANCELLED,
        )


@dataclass(frozen=True)
class TrimRange:
    """Trim bounds in seconds."""

    start: float
    end: float


@dataclass
class DownloadJob:
    """One download request."""

    video_url: str
    filename: str = ""
    action: DownloadAction = DownloadAction.DOWNLOAD
    audio_url: Optional[str] = None
    format_id: Optional[str] = None
    trim: Optional[TrimRange] = None
    audio_format: Optional[str] = None
    audio_bitrate: Optional[int] = None
    referer: Optional[str] = None

    def to_remote_payload(self) -> Dict[str, Any]:
        """Build the JSON body for the remote service's POST /download."""
        payload: Dict[str, Any] = {
            "videoUrl": self.video_url,
            "action": self.action.value,
        }
        if self.audio_url:
            payload["audioUrl"] = self.audio_url
        if self.format_id:
            payload["formatId"] = self.format_id
        if self.trim is not None:
            payload["trim"] = {"start": self.trim.start, "end": self.trim.end}
        if self.audio_format:
            payload["audioFormat"] = self.audio_format
        if self.audio_bitrate:
            payload["audioBitrate"] = self.audio_bitrate
        if self.referer:
            payload["referer"] = self.referer
        return payload
