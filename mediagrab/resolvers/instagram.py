"""Instagram resolver backed by cobalt, including carousel posts."""

import time
from typing import List

import httpx
import structlog

from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver, strip_extension
from mediagrab.resolvers.cobalt import CobaltResponse, cobalt_lookup
from mediagrab.resolvers.detector import extract_video_id
from mediagrab.resolvers.exceptions import VideoUnavailableError

logger = structlog.get_logger(__name__)


def media_thumbnail_url(post_id: str) -> str:
    return f"https://www.instagram.com/p/{post_id}/media/?size=l"


def formats_from_cobalt(response: CobaltResponse) -> List[VideoFormat]:
    if response.url:
        return [VideoFormat(id=f"ig-{int(time.time() * 1000)}", quality="original", url=response.url)]
    return [
        VideoFormat(id=f"ig-{index}", quality=f"Video {index + 1}", url=item.url)
        for index, item in enumerate(response.picker)
        if item.type == "video"
    ]


class InstagramResolver(Resolver):
    """Resolves Instagram posts and reels."""

    name = "instagram"
    platform = Platform.INSTAGRAM

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        post_id = extract_video_id(url, Platform.INSTAGRAM) or ""

        response = await cobalt_lookup(self, url, aFormat="mp3")
        formats = formats_from_cobalt(response)
        if not formats:
            raise VideoUnavailableError("No video found; the post may contain images only")

        return VideoInfo(
            id=post_id or f"ig-{int(time.time() * 1000)}",
            platform=Platform.INSTAGRAM,
            title=strip_extension(response.filename) or "Instagram video",
            thumbnail=await self._thumbnail(post_id),
            formats=formats,
            original_url=url,
        )

    async def _thumbnail(self, post_id: str) -> str:
        """Follow the media endpoint to its CDN image, falling back to the endpoint itself."""
        if not post_id:
            return ""
        media_url = media_thumbnail_url(post_id)
        try:
            response = await self.client.head(media_url, headers=self.headers(), follow_redirects=True)
        except httpx.HTTPError as e:
            logger.debug("instagram_thumbnail_failed", post_id=post_id, error=str(e))
            return media_url
        final = str(response.url)
        return final if "cdninstagram" in final else media_url
