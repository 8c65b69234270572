"""YouTube resolver: innertube player API with a cobalt backup."""

import time
from typing import Any, Dict, List, Optional

import httpx
import structlog

from mediagrab.core.config import DEFAULT_USER_AGENT, YouTubeConfig
from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver, strip_extension
from mediagrab.resolvers.cobalt import cobalt_lookup
from mediagrab.resolvers.detector import extract_video_id
from mediagrab.resolvers.exceptions import (
    InvalidURLError,
    ResolverError,
    UpstreamError,
    VideoUnavailableError,
)

logger = structlog.get_logger(__name__)

PLAYER_URL = "https://www.youtube.com/youtubei/v1/player"

QUALITY_ORDER = ["2160p", "1440p", "1080p", "720p", "480p", "360p", "240p", "144p"]
CODEC_PRIORITY = {"av1": 0, "vp9": 1, "h264": 2}


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def default_thumbnail(video_id: str) -> str:
    return f"https://i.ytimg.com/vi/{video_id}/maxresdefault.jpg"


def codec_from_mime(mime_type: str) -> Optional[str]:
    """Map an adaptive stream mimeType (``video/mp4; codecs="avc1..."``) to a codec tag."""
    if "avc" in mime_type or "h264" in mime_type:
        return "h264"
    if "vp9" in mime_type or "vp09" in mime_type:
        return "vp9"
    if "av01" in mime_type:
        return "av1"
    return None


def _container(mime_type: str) -> str:
    base = mime_type.split(";")[0]
    return base.split("/")[1] if "/" in base else "mp4"


def _int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_streaming_data(streaming_data: Dict[str, Any]) -> List[VideoFormat]:
    """Convert innertube ``streamingData`` into formats.

    Progressive ``formats`` are muxed; ``adaptiveFormats`` are split into
    video-only and audio-only streams. Entries without a plain ``url`` (signed
    ciphers) are skipped.
    """
    formats: List[VideoFormat] = []

    for fmt in streaming_data.get("formats") or []:
        if not fmt.get("url"):
            continue
        formats.append(
            VideoFormat(
                id=str(fmt.get("itag") or f"yt-{len(formats)}"),
                quality=fmt.get("qualityLabel") or "unknown",
                url=fmt["url"],
                size=_int(fmt.get("contentLength")),
                bitrate=_int(fmt.get("bitrate")),
            )
        )

    adaptive = [fmt for fmt in streaming_data.get("adaptiveFormats") or [] if fmt.get("url")]

    for fmt in adaptive:
        mime_type = fmt.get("mimeType") or ""
        if "video" not in mime_type:
            continue
        quality = fmt.get("qualityLabel")
        if not quality:
            height = fmt.get("height") or fmt.get("width")
            quality = f"{height}p" if height else "unknown"
        formats.append(
            VideoFormat(
                id=str(fmt.get("itag") or f"yt-{len(formats)}"),
                quality=quality,
                url=fmt["url"],
                container=_container(mime_type),
                has_audio=False,
                size=_int(fmt.get("contentLength")),
                bitrate=_int(fmt.get("bitrate")),
                codec=codec_from_mime(mime_type),
                fps=_int(fmt.get("fps")),
            )
        )

    for fmt in adaptive:
        mime_type = fmt.get("mimeType") or ""
        if "audio" not in mime_type:
            continue
        kbps = round((_int(fmt.get("bitrate")) or 0) / 1000)
        label = "High" if kbps >= 128 else "Medium" if kbps >= 64 else "Standard"
        formats.append(
            VideoFormat(
                id=str(fmt.get("itag") or f"audio-{len(formats)}"),
                quality=f"{label} ({kbps}kbps)",
                url=fmt["url"],
                container=_container(mime_type),
                has_video=False,
                size=_int(fmt.get("contentLength")),
                bitrate=_int(fmt.get("bitrate")),
            )
        )

    def sort_key(f: VideoFormat):
        rank = QUALITY_ORDER.index(f.quality) if f.quality in QUALITY_ORDER else len(QUALITY_ORDER)
        return (rank, CODEC_PRIORITY.get(f.codec or "", len(CODEC_PRIORITY)))

    formats.sort(key=sort_key)
    return formats


class YouTubeResolver(Resolver):
    """Resolves YouTube watch, shorts, embed and youtu.be URLs."""

    name = "youtube"
    platform = Platform.YOUTUBE

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: Optional[YouTubeConfig] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        super().__init__(client, user_agent)
        self.config = config or YouTubeConfig()

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        video_id = extract_video_id(url, Platform.YOUTUBE)
        if not video_id:
            raise InvalidURLError("Could not extract a YouTube video id from the URL")

        try:
            return await self._from_player_api(video_id)
        except (ResolverError, httpx.HTTPError) as e:
            logger.info("youtube_player_api_failed", video_id=video_id, error=str(e))

        return await self._from_cobalt(video_id)

    async def _from_player_api(self, video_id: str) -> VideoInfo:
        body = {
            "videoId": video_id,
            "context": {
                "client": {
                    "clientName": "WEB",
                    "clientVersion": self.config.client_version,
                    "hl": "zh-CN",
                    "gl": "CN",
                }
            },
        }
        data = await self.fetch_json(
            "POST",
            PLAYER_URL,
            params={"key": self.config.innertube_key},
            json=body,
            headers={"Content-Type": "application/json"},
        )

        details = data.get("videoDetails")
        status = (data.get("playabilityStatus") or {}).get("status")
        if not details or status != "OK":
            reason = (data.get("playabilityStatus") or {}).get("reason") or status or "no details"
            raise VideoUnavailableError(f"YouTube video is not playable: {reason}")

        formats = parse_streaming_data(data.get("streamingData") or {})
        if not formats:
            raise UpstreamError("YouTube returned no directly downloadable streams")

        thumbnails = (details.get("thumbnail") or {}).get("thumbnails") or []
        thumbnail = thumbnails[-1].get("url") if thumbnails else None

        return VideoInfo(
            id=video_id,
            platform=Platform.YOUTUBE,
            title=details.get("title") or "Untitled",
            description=details.get("shortDescription") or "",
            thumbnail=thumbnail or default_thumbnail(video_id),
            duration=_int(details.get("lengthSeconds")) or 0,
            author=details.get("author") or "",
            formats=formats,
            original_url=watch_url(video_id),
        )

    async def _from_cobalt(self, video_id: str) -> VideoInfo:
        response = await cobalt_lookup(
            self, watch_url(video_id), vCodec="h264", vQuality="1080", aFormat="mp3"
        )

        stamp = int(time.time() * 1000)
        formats: List[VideoFormat] = []
        if response.is_direct:
            formats.append(VideoFormat(id=f"cobalt-{stamp}", quality="best", url=response.url))
        elif response.status == "picker":
            for index, item in enumerate(response.picker):
                formats.append(
                    VideoFormat(
                        id=f"cobalt-picker-{stamp}-{index}",
                        quality=item.quality or "unknown",
                        url=item.url,
                    )
                )
        if not formats:
            raise UpstreamError("Could not fetch YouTube video information")

        return VideoInfo(
            id=video_id,
            platform=Platform.YOUTUBE,
            title=strip_extension(response.filename) or "YouTube video",
            thumbnail=default_thumbnail(video_id),
            formats=formats,
            original_url=watch_url(video_id),
        )
