"""TikTok resolver: tikwm, then tikmate, then cobalt."""

from typing import Any, Dict, List

import httpx
import structlog

from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver, strip_extension
from mediagrab.resolvers.cobalt import cobalt_lookup
from mediagrab.resolvers.detector import extract_video_id
from mediagrab.resolvers.exceptions import InvalidURLError, ResolverError, UpstreamError

logger = structlog.get_logger(__name__)

TIKWM_API_URL = "https://www.tikwm.com/api/"
TIKMATE_API_URL = "https://api.tikmate.app/api/lookup"
SHORT_LINK_HOSTS = ("vm.tiktok.com", "vt.tiktok.com")


def canonical_url(video_id: str) -> str:
    return f"https://www.tiktok.com/video/{video_id}"


def parse_tikwm(video_id: str, payload: Dict[str, Any]) -> VideoInfo:
    """Adapt a tikwm response (``{code: 0, data: {...}}``)."""
    if payload.get("code") != 0 or not payload.get("data"):
        raise UpstreamError(f"tikwm: {payload.get('msg') or 'no data'}")
    data = payload["data"]

    formats: List[VideoFormat] = []
    if data.get("play"):
        formats.append(
            VideoFormat(
                id=f"tiktok-hd-{video_id}",
                quality="HD (no watermark)",
                url=data["play"],
                no_watermark=True,
            )
        )
    if data.get("wmplay"):
        formats.append(
            VideoFormat(
                id=f"tiktok-wm-{video_id}",
                quality="HD (watermark)",
                url=data["wmplay"],
                no_watermark=False,
            )
        )
    if data.get("music"):
        formats.append(
            VideoFormat(
                id=f"tiktok-audio-{video_id}",
                quality="Audio",
                url=data["music"],
                container="mp3",
                has_video=False,
            )
        )
    if not formats:
        raise UpstreamError("tikwm: no media links")

    author = data.get("author") or {}
    return VideoInfo(
        id=video_id,
        platform=Platform.TIKTOK,
        title=data.get("title") or "TikTok video",
        description=data.get("desc") or data.get("title") or "",
        thumbnail=data.get("cover") or data.get("origin_cover") or "",
        duration=int(data.get("duration") or 0),
        author=author.get("nickname") or author.get("unique_id") or "",
        author_avatar=author.get("avatar") or "",
        formats=formats,
        original_url=canonical_url(video_id),
    )


def parse_tikmate(video_id: str, payload: Dict[str, Any]) -> VideoInfo:
    video = payload.get("video")
    if not payload.get("success") or not video:
        raise UpstreamError("tikmate: lookup failed")

    formats: List[VideoFormat] = []
    if video.get("url"):
        formats.append(
            VideoFormat(id=f"tikmate-{video_id}", quality="HD (no watermark)", url=video["url"], no_watermark=True)
        )
    if video.get("url_no_wm"):
        formats.append(
            VideoFormat(id=f"tikmate-nwm-{video_id}", quality="No watermark", url=video["url_no_wm"], no_watermark=True)
        )
    if not formats:
        raise UpstreamError("tikmate: no media links")

    return VideoInfo(
        id=video_id,
        platform=Platform.TIKTOK,
        title=video.get("title") or "TikTok video",
        thumbnail=video.get("cover") or "",
        duration=int(video.get("duration") or 0),
        author=(video.get("author") or {}).get("nickname") or "",
        formats=formats,
        original_url=canonical_url(video_id),
    )


class TikTokResolver(Resolver):
    """Resolves TikTok video pages and vm/vt short links."""

    name = "tiktok"
    platform = Platform.TIKTOK

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        real_url = url
        if any(host in url for host in SHORT_LINK_HOSTS):
            real_url = await self.final_url(url)

        video_id = extract_video_id(real_url, Platform.TIKTOK)
        if not video_id:
            raise InvalidURLError("Could not extract a TikTok video id from the URL")

        for name, lookup in (("tikwm", self._tikwm), ("tikmate", self._tikmate)):
            try:
                return await lookup(video_id)
            except (ResolverError, httpx.HTTPError) as e:
                logger.info("tiktok_backend_failed", backend=name, video_id=video_id, error=str(e))

        return await self._cobalt(url, video_id)

    async def _tikwm(self, video_id: str) -> VideoInfo:
        payload = await self.fetch_json(
            "GET",
            TIKWM_API_URL,
            params={"url": canonical_url(video_id)},
            headers={"Accept": "application/json"},
        )
        return parse_tikwm(video_id, payload)

    async def _tikmate(self, video_id: str) -> VideoInfo:
        payload = await self.fetch_json(
            "GET",
            TIKMATE_API_URL,
            params={"url": canonical_url(video_id)},
            headers={"Accept": "application/json"},
        )
        return parse_tikmate(video_id, payload)

    async def _cobalt(self, url: str, video_id: str) -> VideoInfo:
        response = await cobalt_lookup(self, url, aFormat="mp3")
        if not response.is_direct:
            raise UpstreamError("Could not fetch TikTok video information")
        return VideoInfo(
            id=video_id,
            platform=Platform.TIKTOK,
            title=strip_extension(response.filename) or "TikTok video",
            formats=[
                VideoFormat(id=f"cobalt-tiktok-{video_id}", quality="Best", url=response.url, no_watermark=True)
            ],
            original_url=url,
        )
