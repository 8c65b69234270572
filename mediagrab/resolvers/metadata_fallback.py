"""Metadata-fallback resolver backed by a third-party aggregator.

The aggregator exposes one endpoint per platform and answers with a
different JSON shape for each. Payloads are first classified into a
``PayloadShape`` tag, then converted by exactly one adapter function.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog

from mediagrab.core.config import DEFAULT_USER_AGENT, MetadataFallbackConfig
from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver, stable_id
from mediagrab.resolvers.detector import detect, extract_video_id
from mediagrab.resolvers.exceptions import UpstreamError, VideoUnavailableError

logger = structlog.get_logger(__name__)

ENDPOINTS: Dict[Platform, str] = {
    Platform.XIAOHONGSHU: "rednote",
    Platform.DOUYIN: "douyin",
    Platform.TIKTOK: "ttdl",
    Platform.INSTAGRAM: "igdl",
    Platform.TWITTER: "twitter",
    Platform.YOUTUBE: "youtube",
}
DEFAULT_ENDPOINT = "aio"


class PayloadShape(str, Enum):
    """Known aggregator response shapes."""

    NOTE = "note"  # xiaohongshu note: downloads list or image gallery
    VIDEO_OBJECT = "video_object"  # douyin: result.downloads / result.video / result.links
    VIDEO_LIST = "video_list"  # tiktok: video is a list of urls or {quality, url}
    MP4_MP3 = "mp4_mp3"  # youtube: flat mp4 / mp3 links
    MEDIA_LIST = "media_list"  # instagram: top-level list of {url, thumbnail}
    SINGLE_URL = "single_url"  # twitter: {url, title}


def endpoint_for(platform: Platform) -> str:
    return ENDPOINTS.get(platform, DEFAULT_ENDPOINT)


def classify_payload(data: Any) -> Optional[PayloadShape]:
    """Tag a raw payload with its shape, checking the most specific shapes first."""
    if isinstance(data, list):
        if data and isinstance(data[0], dict) and data[0].get("url"):
            return PayloadShape.MEDIA_LIST
        return None
    if not isinstance(data, dict):
        return None

    result = data.get("result") if isinstance(data.get("result"), dict) else {}
    if data.get("noteId") or result.get("noteId"):
        return PayloadShape.NOTE
    if result.get("video") or result.get("downloads"):
        return PayloadShape.VIDEO_OBJECT
    if isinstance(data.get("video"), list):
        return PayloadShape.VIDEO_LIST
    if data.get("mp4") or data.get("mp3"):
        return PayloadShape.MP4_MP3
    if data.get("url"):
        return PayloadShape.SINGLE_URL
    return None


def parse_clock_duration(value: Any) -> int:
    """Parse an "MM:SS" or "H:MM:SS" duration string; anything else is 0."""
    parts = str(value or "").strip().split(":")
    if len(parts) not in (2, 3):
        return 0
    seconds = 0
    for part in parts:
        if not part.isdigit():
            return 0
        seconds = seconds * 60 + int(part)
    return seconds


def _content_id(url: str, platform: Platform, *candidates: Any) -> str:
    for candidate in candidates:
        if candidate:
            return str(candidate)
    return extract_video_id(url, platform) or stable_id(url, platform.value)


def adapt_note(data: Dict[str, Any], url: str) -> VideoInfo:
    note = data.get("result") if isinstance(data.get("result"), dict) else data
    formats = [
        VideoFormat(id=dl.get("quality") or "default", quality=dl.get("quality") or "original", url=dl["url"])
        for dl in note.get("downloads") or []
        if isinstance(dl, dict) and dl.get("url")
    ]
    if not formats:
        # Older responses carry a single ``video`` string or ``{url}`` object
        video = note.get("video")
        link = video.get("url") if isinstance(video, dict) else video
        if isinstance(link, str) and link:
            formats.append(VideoFormat(id="default", quality="original", url=link))
    images: List[str] = [img for img in note.get("images") or [] if isinstance(img, str)]

    if not formats and not images:
        raise VideoUnavailableError("No downloadable media in the note")

    return VideoInfo(
        id=_content_id(url, Platform.XIAOHONGSHU, note.get("noteId")),
        platform=Platform.XIAOHONGSHU,
        title=note.get("title") or note.get("nickname") or "Xiaohongshu note",
        description=note.get("desc") or "",
        thumbnail=images[0] if images else "",
        duration=parse_clock_duration(note.get("duration")) if formats else 0,
        author=note.get("nickname") or "",
        formats=formats,
        images=images if not formats else None,
        original_url=url,
    )


def adapt_video_object(data: Dict[str, Any], url: str) -> VideoInfo:
    video = data.get("result") or data
    link = None
    for dl in video.get("downloads") or []:
        if isinstance(dl, dict) and dl.get("url"):
            link = dl["url"]
            break
    if not link and isinstance(video.get("video"), str):
        link = video["video"]
    if not link:
        links = video.get("links") or []
        if links and isinstance(links[0], dict):
            link = links[0].get("url")
    if not link:
        raise VideoUnavailableError("No video link in the response")

    desc = video.get("desc") or ""
    images = video.get("images") or []
    return VideoInfo(
        id=_content_id(url, Platform.DOUYIN, video.get("noteId"), video.get("videoId")),
        platform=Platform.DOUYIN,
        title=video.get("title") or desc[:100] or "Douyin video",
        description=desc,
        thumbnail=video.get("cover") or (images[0] if images else ""),
        author=video.get("nickname") or video.get("author") or "",
        formats=[VideoFormat(id="default", quality="original", url=link)],
        original_url=url,
    )


def adapt_video_list(data: Dict[str, Any], url: str) -> VideoInfo:
    formats = []
    for index, item in enumerate(data.get("video") or []):
        link = item.get("url") if isinstance(item, dict) else item
        if not link:
            continue
        quality = item.get("quality") if isinstance(item, dict) else None
        formats.append(VideoFormat(id=f"video-{index}", quality=quality or f"Quality {index + 1}", url=link))
    if not formats:
        raise VideoUnavailableError("No video link in the response")

    return VideoInfo(
        id=_content_id(url, Platform.TIKTOK),
        platform=Platform.TIKTOK,
        title=data.get("title") or "TikTok video",
        thumbnail=data.get("thumbnail") or "",
        formats=formats,
        original_url=url,
    )


def adapt_mp4_mp3(data: Dict[str, Any], url: str) -> VideoInfo:
    formats = []
    if data.get("mp4"):
        formats.append(VideoFormat(id="mp4", quality="MP4", url=data["mp4"]))
    if data.get("mp3"):
        formats.append(VideoFormat(id="mp3", quality="MP3", url=data["mp3"], container="mp3", has_video=False))

    return VideoInfo(
        id=_content_id(url, Platform.YOUTUBE),
        platform=Platform.YOUTUBE,
        title=data.get("title") or "YouTube video",
        thumbnail=data.get("thumbnail") or "",
        author=data.get("author") or "",
        formats=formats,
        original_url=url,
    )


def adapt_media_list(data: List[Dict[str, Any]], url: str) -> VideoInfo:
    formats = [
        VideoFormat(id=f"ig-{index}", quality=f"Video {index + 1}", url=item["url"])
        for index, item in enumerate(data)
        if isinstance(item, dict) and item.get("url")
    ]
    return VideoInfo(
        id=_content_id(url, Platform.INSTAGRAM),
        platform=Platform.INSTAGRAM,
        title="Instagram media",
        thumbnail=data[0].get("thumbnail") or "",
        formats=formats,
        original_url=url,
    )


def adapt_single_url(data: Dict[str, Any], url: str) -> VideoInfo:
    return VideoInfo(
        id=_content_id(url, Platform.TWITTER),
        platform=Platform.TWITTER,
        title=data.get("title") or "Twitter video",
        formats=[VideoFormat(id="default", quality="original", url=data["url"])],
        original_url=url,
    )


ADAPTERS: Dict[PayloadShape, Callable[[Any, str], VideoInfo]] = {
    PayloadShape.NOTE: adapt_note,
    PayloadShape.VIDEO_OBJECT: adapt_video_object,
    PayloadShape.VIDEO_LIST: adapt_video_list,
    PayloadShape.MP4_MP3: adapt_mp4_mp3,
    PayloadShape.MEDIA_LIST: adapt_media_list,
    PayloadShape.SINGLE_URL: adapt_single_url,
}


def adapt_payload(data: Any, url: str) -> VideoInfo:
    """Classify and convert an aggregator payload.

    Raises:
        UpstreamError: If the payload matches no known shape
    """
    shape = classify_payload(data)
    if shape is None:
        raise UpstreamError("Unrecognized metadata service response")
    return ADAPTERS[shape](data, url)


class MetadataFallbackResolver(Resolver):
    """Queries the aggregator endpoint that matches the URL's platform."""

    name = "metadata-fallback"

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: Optional[MetadataFallbackConfig] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        super().__init__(client, user_agent)
        self.config = config or MetadataFallbackConfig()

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        endpoint = endpoint_for(detect(url))
        data = await self.fetch_json("GET", f"{self.config.base_url}/{endpoint}", params={"url": url})
        info = adapt_payload(data, url)
        logger.debug("metadata_fallback_adapted", endpoint=endpoint, formats=len(info.formats))
        return info
