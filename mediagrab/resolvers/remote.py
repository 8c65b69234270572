"""Last-resort resolver that asks the remote transcoding service to extract metadata."""

from typing import Any, Dict, List, Optional

import structlog

from mediagrab.models.video import Platform, Subtitle, VideoFormat, VideoInfo
from mediagrab.resolvers.base import PLACEHOLDER_TITLE, ResolveOptions, Resolver, stable_id
from mediagrab.resolvers.exceptions import UpstreamError, VideoUnavailableError
from mediagrab.services.exceptions import UpstreamFailureError
from mediagrab.services.remote_client import RemoteServiceClient

logger = structlog.get_logger(__name__)


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _platform(value: Any) -> Platform:
    try:
        platform = Platform(str(value))
    except ValueError:
        return Platform.OTHER
    return Platform.OTHER if platform == Platform.UNKNOWN else platform


def format_from_payload(item: Dict[str, Any], index: int) -> Optional[VideoFormat]:
    if not isinstance(item, dict) or not item.get("url"):
        return None
    return VideoFormat(
        id=str(item.get("id") or f"remote-{index}"),
        quality=str(item.get("quality") or "original"),
        url=item["url"],
        container=item.get("format") or item.get("container") or "mp4",
        has_video=item.get("hasVideo", True) is not False,
        has_audio=item.get("hasAudio", True) is not False,
        size=_int_or_none(item.get("size")),
        bitrate=_int_or_none(item.get("bitrate")),
        codec=item.get("codec"),
        fps=_int_or_none(item.get("fps")),
        no_watermark=item.get("noWatermark"),
    )


def subtitles_from_payload(items: Any) -> Optional[List[Subtitle]]:
    if not isinstance(items, list):
        return None
    subtitles = [
        Subtitle(
            lang=str(item.get("lang") or ""),
            label=str(item.get("label") or item.get("lang") or ""),
            url=item["url"],
            format=item.get("format") or "srt",
            is_auto_generated=bool(item.get("isAutoGenerated")),
        )
        for item in items
        if isinstance(item, dict) and item.get("url")
    ]
    return subtitles or None


def video_info_from_payload(data: Dict[str, Any], url: str) -> VideoInfo:
    """Convert the service's camelCase VideoInfo JSON.

    The platform is taken from the payload as-is; the chain overrides it with
    the detected one.

    Raises:
        VideoUnavailableError: If the payload carries neither formats nor images
    """
    formats = [
        fmt
        for fmt in (format_from_payload(item, i) for i, item in enumerate(data.get("formats") or []))
        if fmt is not None
    ]
    images = [img for img in data.get("images") or [] if isinstance(img, str)]
    if not formats and not images:
        raise VideoUnavailableError("Remote service returned no media")

    return VideoInfo(
        id=str(data.get("id") or stable_id(url, "remote")),
        platform=_platform(data.get("platform")),
        title=data.get("title") or PLACEHOLDER_TITLE,
        description=data.get("description") or "",
        thumbnail=data.get("thumbnail") or "",
        author=data.get("author") or "",
        author_avatar=data.get("authorAvatar") or "",
        duration=_int_or_none(data.get("duration")) or 0,
        formats=formats,
        subtitles=subtitles_from_payload(data.get("subtitles")),
        images=images or None,
        original_url=data.get("originalUrl") or url,
        expires_in=_int_or_none(data.get("expiresIn")),
    )


class RemoteFallbackResolver(Resolver):
    """Delegates extraction to the remote service's ``POST /parse``."""

    name = "remote"

    def __init__(self, remote: RemoteServiceClient):
        super().__init__(remote.client)
        self.remote = remote

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        try:
            body = await self.remote.parse(url)
        except UpstreamFailureError as e:
            raise UpstreamError(str(e)) from e

        if not body.get("success") or not isinstance(body.get("data"), dict):
            raise UpstreamError(body.get("error") or "Remote service could not parse the URL")

        info = video_info_from_payload(body["data"], url)
        logger.debug("remote_parse_succeeded", url=url, formats=len(info.formats))
        return info
