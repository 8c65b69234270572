"""Request and response schemas for API endpoints.

Wire payloads use camelCase (``videoUrl``, ``hasAudio``, ``sizeText``); the
models accept snake_case too so Python callers can build them directly.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from mediagrab.core.validation import AudioFormat
from mediagrab.models.job import DownloadAction, DownloadJob, TrimRange
from mediagrab.models.video import Subtitle, VideoFormat, VideoInfo
from mediagrab.services.batch import BatchSummary
from mediagrab.services.normalizer import FormatView, NormalizedFormats


class CamelModel(BaseModel):
    """Base model serializing to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FormatResponse(CamelModel):
    """One downloadable format."""

    id: str = Field(..., examples=["137"])
    quality: str = Field(..., examples=["1080p"])
    url: str = Field(..., examples=["https://rr3---sn.googlevideo.com/videoplayback?..."])
    container: str = Field("mp4", alias="format", examples=["mp4", "webm", "m4a"])
    has_video: bool = True
    has_audio: bool = True
    size: Optional[int] = Field(None, description="Size in bytes", examples=[52428800])
    size_text: Optional[str] = Field(None, examples=["50 MB"])
    bitrate: Optional[int] = Field(None, examples=[2500000])
    codec: Optional[str] = Field(None, examples=["h264", "vp9", "av1"])
    fps: Optional[int] = Field(None, examples=[60])
    no_watermark: Optional[bool] = None
    format_type: str = Field("video+audio", examples=["video+audio", "video-only", "audio-only"])

    @classmethod
    def from_format(cls, fmt: VideoFormat) -> "FormatResponse":
        return cls(
            id=fmt.id,
            quality=fmt.quality,
            url=fmt.url,
            container=fmt.container,
            has_video=fmt.has_video,
            has_audio=fmt.has_audio,
            size=fmt.size,
            size_text=fmt.size_text,
            bitrate=fmt.bitrate,
            codec=fmt.codec,
            fps=fmt.fps,
            no_watermark=fmt.no_watermark,
            format_type=fmt.format_type,
        )


class SubtitleResponse(CamelModel):
    """Subtitle track."""

    lang: str = Field(..., examples=["en"])
    label: str = Field(..., examples=["English"])
    url: str
    format: str = Field("srt", examples=["srt"])
    is_auto_generated: bool = False

    @classmethod
    def from_subtitle(cls, subtitle: Subtitle) -> "SubtitleResponse":
        return cls(
            lang=subtitle.lang,
            label=subtitle.label,
            url=subtitle.url,
            format=subtitle.format,
            is_auto_generated=subtitle.is_auto_generated,
        )


class VideoInfoResponse(CamelModel):
    """Canonical resolution result."""

    id: str = Field(..., examples=["dQw4w9WgXcQ"])
    platform: str = Field(..., examples=["youtube"])
    title: str = Field(..., examples=["Rick Astley - Never Gonna Give You Up"])
    description: str = ""
    thumbnail: str = ""
    duration: int = Field(0, description="Duration in seconds", examples=[212])
    duration_text: str = Field("", examples=["3:32"])
    author: str = ""
    author_avatar: str = ""
    formats: List[FormatResponse] = Field(default_factory=list)
    subtitles: Optional[List[SubtitleResponse]] = None
    images: Optional[List[str]] = None
    original_url: str
    parsed_at: str = Field(..., examples=["2025-12-25T10:30:00+00:00"])
    expires_in: Optional[int] = Field(None, description="Seconds until media URLs go stale")

    @classmethod
    def from_info(cls, info: VideoInfo) -> "VideoInfoResponse":
        return cls(
            id=info.id,
            platform=info.platform.value,
            title=info.title,
            description=info.description,
            thumbnail=info.thumbnail,
            duration=info.duration,
            duration_text=info.duration_text,
            author=info.author,
            author_avatar=info.author_avatar,
            formats=[FormatResponse.from_format(f) for f in info.formats],
            subtitles=(
                [SubtitleResponse.from_subtitle(s) for s in info.subtitles]
                if info.subtitles
                else None
            ),
            images=info.images,
            original_url=info.original_url,
            parsed_at=info.parsed_at.isoformat(),
            expires_in=info.expires_in,
        )


class ResolveRequest(CamelModel):
    """Request body for the resolve endpoint."""

    url: str = Field(..., examples=["https://www.bilibili.com/video/BV1xx411c7mD"])
    credentials: Dict[str, str] = Field(
        default_factory=dict,
        description="Per-platform session credential, keyed by platform name",
        examples=[{"bilibili": "SESSDATA value"}],
    )


class ResolveResponse(CamelModel):
    """ResolveResult payload: ``data`` on success, ``error`` on failure."""

    success: bool
    data: Optional[VideoInfoResponse] = None
    error: Optional[str] = None


class BatchResolveRequest(CamelModel):
    """Request body for batch resolution."""

    urls: List[str] = Field(..., min_length=1, examples=[["https://x.com/a/status/1", "https://b23.tv/abc"]])
    credentials: Dict[str, str] = Field(default_factory=dict)


class BatchErrorResponse(CamelModel):
    url: str
    error: str


class BatchResolveResponse(CamelModel):
    """Batch summary. ``results`` holds unique successes in completion order."""

    total: int
    completed: int
    succeeded: int
    duplicates: int
    failed: int
    results: List[VideoInfoResponse] = Field(default_factory=list)
    errors: List[BatchErrorResponse] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: BatchSummary) -> "BatchResolveResponse":
        return cls(
            total=summary.total,
            completed=summary.completed,
            succeeded=summary.succeeded,
            duplicates=summary.duplicates,
            failed=summary.failed,
            results=[VideoInfoResponse.from_info(info) for info in summary.results],
            errors=[BatchErrorResponse(url=e.url, error=e.error) for e in summary.errors],
        )


class FormatsRequest(CamelModel):
    """Request body for the formats endpoint."""

    url: str
    codec: str = Field("auto", description="Codec filter applied before de-duplication", examples=["auto", "H264", "VP9"])
    credentials: Dict[str, str] = Field(default_factory=dict)


class FormatViewResponse(CamelModel):
    """One view: full sorted list, de-duplicated display list and codecs present."""

    formats: List[FormatResponse] = Field(default_factory=list)
    deduplicated: List[FormatResponse] = Field(default_factory=list)
    codecs: List[str] = Field(default_factory=list)


class FormatsResponse(CamelModel):
    """Normalized format views for a resolved URL."""

    id: str
    platform: str
    title: str
    all_video: FormatViewResponse
    video_only: FormatViewResponse
    audio_only: FormatViewResponse
    best_audio: Optional[FormatResponse] = None

    @classmethod
    def from_normalized(cls, info: VideoInfo, normalized: NormalizedFormats, codec: str) -> "FormatsResponse":
        def view(name: FormatView) -> FormatViewResponse:
            return FormatViewResponse(
                formats=[FormatResponse.from_format(f) for f in normalized.view(name)],
                deduplicated=[FormatResponse.from_format(f) for f in normalized.display(name, codec)],
                codecs=normalized.codecs(name),
            )

        return cls(
            id=info.id,
            platform=info.platform.value,
            title=info.title,
            all_video=view(FormatView.ALL_VIDEO),
            video_only=view(FormatView.VIDEO_ONLY),
            audio_only=view(FormatView.AUDIO_ONLY),
            best_audio=FormatResponse.from_format(normalized.best_audio) if normalized.best_audio else None,
        )


class TrimRequest(CamelModel):
    start: float = Field(..., ge=0, description="Start offset in seconds", examples=[5])
    end: float = Field(..., gt=0, description="End offset in seconds", examples=[10])

    @model_validator(mode="after")
    def check_order(self) -> "TrimRequest":
        if self.end <= self.start:
            raise ValueError("end must be greater than start")
        return self


class DownloadRequest(CamelModel):
    """Request body for the download endpoint."""

    video_url: str = Field(
        ...,
        description="Media URL, or a page URL when a format id is given",
        examples=["https://v16-webapp.tiktok.com/video.mp4"],
    )
    audio_url: Optional[str] = Field(None, description="Separate audio stream to merge")
    format_id: Optional[str] = Field(None, description="Format to re-resolve on the remote service", examples=["137"])
    filename: Optional[str] = Field(None, examples=["my_video.mp4"])
    action: DownloadAction = Field(DownloadAction.DOWNLOAD, examples=["download", "merge", "trim", "extract-audio"])
    trim: Optional[TrimRequest] = None
    audio_format: Optional[str] = Field(None, examples=["mp3", "m4a", "wav"])
    audio_bitrate: Optional[int] = Field(None, ge=32, le=512, examples=[320])
    referer: Optional[str] = Field(None, description="Referer hint for hotlink-protected CDNs")

    @field_validator("audio_format")
    @classmethod
    def validate_audio_format(cls, v: Optional[str]) -> Optional[str]:
        """Validate audio format if provided."""
        if v is None:
            return v
        try:
            AudioFormat(v.lower())
            return v.lower()
        except ValueError as e:
            valid = [f.value for f in AudioFormat]
            raise ValueError(f"Invalid audio format. Valid options: {', '.join(valid)}") from e

    def to_job(self) -> DownloadJob:
        return DownloadJob(
            video_url=self.video_url.strip(),
            filename=self.filename or "",
            action=self.action,
            audio_url=self.audio_url,
            format_id=self.format_id,
            trim=TrimRange(self.trim.start, self.trim.end) if self.trim else None,
            audio_format=self.audio_format,
            audio_bitrate=self.audio_bitrate,
            referer=self.referer,
        )


class DownloadRedirectResponse(CamelModel):
    """Returned when the remote service finished with a direct link."""

    success: Literal[True] = True
    download_url: str
    filename: str


class ErrorDetail(BaseModel):
    """Structured error response.

    All API errors follow this format with machine-readable error codes
    and optional suggestions for resolution.
    """

    error_code: str = Field(
        ...,
        description="Machine-readable error code",
        examples=["INVALID_INPUT", "REMOTE_JOB_TIMEOUT", "PAYLOAD_TOO_LARGE"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Processing did not finish within 1800s"],
    )
    details: Optional[str] = Field(None, description="Additional error context")
    timestamp: str = Field(..., examples=["2025-12-25T10:30:00Z"])
    request_id: Optional[str] = Field(
        None,
        description="Request ID for tracing",
        examples=["550e8400-e29b-41d4-a716-446655440000"],
    )
    suggestion: Optional[str] = Field(
        None,
        description="Suggested action to resolve the error",
        examples=["Try a shorter clip or a lower quality"],
    )


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    status: Literal["healthy", "unhealthy"] = Field(..., examples=["healthy"])
    details: Optional[Dict[str, Any]] = Field(default=None, examples=[{"latency_ms": 150}])


class HealthResponse(BaseModel):
    """Detailed health check response."""

    status: Literal["healthy", "degraded"] = Field(..., examples=["healthy"])
    timestamp: str = Field(..., examples=["2025-12-25T10:30:00Z"])
    version: str = Field(..., examples=["1.0.0"])
    uptime_seconds: float = Field(..., examples=[3600.5])
    components: Dict[str, ComponentHealth]


class LivenessResponse(BaseModel):
    """Simple liveness check response for container orchestration."""

    status: Literal["alive"] = Field(..., examples=["alive"])


class ReadinessResponse(BaseModel):
    """Readiness check response for load balancer integration."""

    status: Literal["ready", "not_ready"] = Field(..., examples=["ready"])
    ready: bool = Field(..., examples=[True])
    message: Optional[str] = Field(default=None, examples=["Remote service unreachable"])
