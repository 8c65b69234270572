"""Xiaohongshu (RedNote) resolver.

Short links are expanded first because the aggregator only understands full
note URLs. The aggregator's note endpoint is tried first, then the note page's
Open Graph video tags.
"""

from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import structlog
from bs4 import BeautifulSoup

from mediagrab.core.config import DEFAULT_USER_AGENT, MetadataFallbackConfig
from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver, is_meaningful_title
from mediagrab.resolvers.exceptions import InvalidURLError, ResolverError, UpstreamError, VideoUnavailableError
from mediagrab.resolvers.generic import extract_og_videos, extract_thumbnail, extract_title
from mediagrab.resolvers.metadata_fallback import adapt_note, endpoint_for

logger = structlog.get_logger(__name__)

SHORT_LINK_HOST = "xhslink.com"
WECHAT_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 MicroMessenger/8.0.0"
)
NOTE_PATH_PREFIXES = ("/explore/", "/discovery/item/")
NOTE_ID_PARAMS = ("noteId", "note_id")
DEFAULT_TITLE = "Xiaohongshu note"
IMAGE_OR_DELETED = "The note may be an image note or has been deleted. Check that the link points to a video note"


def note_id_from_url(url: str) -> Optional[str]:
    """Note id from ``/explore/ID``, ``/discovery/item/ID`` or a noteId query parameter."""
    parsed = urlparse(url)
    for prefix in NOTE_PATH_PREFIXES:
        if prefix in parsed.path:
            candidate = parsed.path.split(prefix, 1)[1].split("/")[0]
            if candidate.isalnum():
                return candidate

    query = parse_qs(parsed.query)
    for param in NOTE_ID_PARAMS:
        values = query.get(param)
        if values and values[0]:
            return values[0]
    return None


def parse_note_payload(payload: Any, url: str, note_id: str) -> VideoInfo:
    """Adapt an aggregator note answer (``{status, result}`` or a bare note).

    Raises:
        VideoUnavailableError: If the service found nothing for the note
        UpstreamError: If the service reported another failure
    """
    if not isinstance(payload, dict):
        raise UpstreamError("rednote: unexpected response")
    if payload.get("status") is False or ("result" in payload and not payload.get("result")):
        message = str(payload.get("message") or "")
        if "No results" in message:
            raise VideoUnavailableError(IMAGE_OR_DELETED)
        raise UpstreamError(f"rednote: {message or 'lookup failed'}")

    info = adapt_note(payload, url)
    info.id = note_id
    for index, fmt in enumerate(info.formats):
        fmt.id = f"xhs-{note_id}-{index}"
    return info


class XiaohongshuResolver(Resolver):
    """Resolves Xiaohongshu notes and xhslink short links."""

    name = "xiaohongshu"
    platform = Platform.XIAOHONGSHU

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: Optional[MetadataFallbackConfig] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        super().__init__(client, user_agent)
        self.config = config or MetadataFallbackConfig()

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        real_url = url
        if SHORT_LINK_HOST in url:
            real_url = await self.final_url(url, method="GET", headers={"User-Agent": WECHAT_USER_AGENT})
            logger.debug("xiaohongshu_short_link_expanded", url=url, real_url=real_url)

        note_id = note_id_from_url(real_url)
        if not note_id:
            raise InvalidURLError("Could not extract a Xiaohongshu note id from the URL")

        if self.config.enabled:
            try:
                return await self._aggregator(real_url, note_id)
            except VideoUnavailableError:
                raise
            except (ResolverError, httpx.HTTPError) as e:
                logger.info("xiaohongshu_backend_failed", backend="rednote", note_id=note_id, error=str(e))

        return await self._note_page(real_url, note_id)

    async def _aggregator(self, url: str, note_id: str) -> VideoInfo:
        payload = await self.fetch_json(
            "GET",
            f"{self.config.base_url}/{endpoint_for(Platform.XIAOHONGSHU)}",
            params={"url": url},
        )
        return parse_note_payload(payload, url, note_id)

    async def _note_page(self, url: str, note_id: str) -> VideoInfo:
        response = await self.fetch("GET", url, headers={"User-Agent": WECHAT_USER_AGENT})
        soup = BeautifulSoup(response.text, "html.parser")
        links = extract_og_videos(soup)
        if not links:
            raise VideoUnavailableError("No video found on the note page. It may be an image note or need login")

        title = extract_title(soup)
        return VideoInfo(
            id=note_id,
            platform=Platform.XIAOHONGSHU,
            title=title if is_meaningful_title(title) else DEFAULT_TITLE,
            thumbnail=extract_thumbnail(soup),
            formats=[
                VideoFormat(id=f"xhs-{note_id}-{index}", quality="original", url=link)
                for index, link in enumerate(links)
            ],
            original_url=url,
        )
