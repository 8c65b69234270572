"""Douyin resolver.

Douyin pages are rendered client-side behind signed requests, so resolution
goes through public download helper sites, tried in order until one of them
returns a media link.
"""

import re
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import httpx
import structlog
from bs4 import BeautifulSoup

from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver
from mediagrab.resolvers.detector import extract_video_id
from mediagrab.resolvers.exceptions import InvalidURLError, ResolverError, UpstreamError
from mediagrab.resolvers.metadata_fallback import parse_clock_duration

logger = structlog.get_logger(__name__)

TIKVIDEO_API_URL = "https://tikvideo.app/api/ajaxSearch"
TIKVIDEO_REFERER = "https://tikvideo.app/en/download-douyin-video"
DOUYIN_WTF_API_URL = "https://api.douyin.wtf/api"
SNAPTIK_URL = "https://snaptik.app/abc2.php"
TIKSAVE_URL = "https://tiksave.io/api/ajaxSearch"
SSSTIK_URL = "https://ssstik.io/abc"

SHORT_LINK_HOSTS = ("v.douyin.com", "vm.douyin.com")
MOBILE_USER_AGENT = "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15"
DESKTOP_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0.0.0"
DEFAULT_TITLE = "Douyin video"
ORIGINAL_QUALITY = "original"

_CLOCK = re.compile(r"^\d+(?::\d{1,2}){1,2}$")
_MP4_LINK = re.compile(r"https?://[^\s\"'<>]+\.mp4[^\s\"'<>]*")
# Download buttons that are not the video itself
_SKIPPED_BUTTONS = ("mp3", "profile")


def canonical_url(video_id: str) -> str:
    return f"https://www.douyin.com/video/{video_id}"


def douyin_video_id(url: str) -> Optional[str]:
    """Aweme id from a ``/video/N`` or ``/note/N`` path, or a ``modId`` query."""
    video_id = extract_video_id(url, Platform.DOUYIN)
    if video_id:
        return video_id
    mod_id = parse_qs(urlparse(url).query).get("modId")
    if mod_id and mod_id[0].isdigit():
        return mod_id[0]
    return None


def _single_format(video_id: str, link: str) -> List[VideoFormat]:
    # Douyin serves one quality per video
    return [VideoFormat(id=f"douyin-{video_id}", quality=ORIGINAL_QUALITY, url=link)]


def parse_tikvideo(html: str, video_id: str) -> VideoInfo:
    """Adapt the HTML fragment tikvideo returns in its ``data`` field."""
    soup = BeautifulSoup(html, "html.parser")

    link = None
    for button in soup.find_all("a", class_="tik-button-dl", href=True):
        label = button.get_text(" ", strip=True).lower()
        if any(skipped in label for skipped in _SKIPPED_BUTTONS):
            continue
        link = button["href"]
        break
    if not link:
        raise UpstreamError("tikvideo: no video link")

    heading = soup.find("h3")
    image = soup.find("img", src=True)
    duration = 0
    for paragraph in soup.find_all("p"):
        text = paragraph.get_text(strip=True)
        if _CLOCK.match(text):
            duration = parse_clock_duration(text)
            break

    return VideoInfo(
        id=video_id,
        platform=Platform.DOUYIN,
        title=heading.get_text(strip=True) if heading and heading.get_text(strip=True) else DEFAULT_TITLE,
        thumbnail=image["src"] if image else "",
        duration=duration,
        formats=_single_format(video_id, link),
        original_url=canonical_url(video_id),
    )


def parse_douyin_wtf(video_id: str, payload: Any) -> VideoInfo:
    if not isinstance(payload, dict):
        raise UpstreamError("douyin.wtf: unexpected response")
    link = payload.get("url") or payload.get("video")
    if not isinstance(link, str) or not link:
        raise UpstreamError("douyin.wtf: no video link")
    return VideoInfo(
        id=video_id,
        platform=Platform.DOUYIN,
        title=payload.get("title") or DEFAULT_TITLE,
        thumbnail=payload.get("cover") or payload.get("thumbnail") or "",
        formats=_single_format(video_id, link),
        original_url=canonical_url(video_id),
    )


def first_mp4_link(body: str) -> Optional[str]:
    """First ``.mp4`` URL in a scraped page, with JS and HTML escaping undone."""
    match = _MP4_LINK.search(body)
    if not match:
        return None
    return match.group(0).replace("\\", "").replace("&amp;", "&")


class DouyinResolver(Resolver):
    """Resolves Douyin video pages and v/vm short links."""

    name = "douyin"
    platform = Platform.DOUYIN

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        real_url = url
        if any(host in url for host in SHORT_LINK_HOSTS):
            real_url = await self.final_url(url, method="GET", headers={"User-Agent": MOBILE_USER_AGENT})

        video_id = douyin_video_id(real_url)
        if not video_id:
            raise InvalidURLError("Could not extract a Douyin video id from the URL")

        methods: List[Tuple[str, Callable[[], Awaitable[VideoInfo]]]] = [
            ("tikvideo", partial(self._tikvideo, real_url, video_id)),
            ("douyin.wtf", partial(self._douyin_wtf, video_id)),
            ("snaptik", partial(self._scrape, "snaptik", SNAPTIK_URL, {"url": url}, video_id)),
            ("tiksave", partial(self._scrape, "tiksave", TIKSAVE_URL, {"q": url, "lang": "zh"}, video_id)),
            ("ssstik", partial(self._scrape, "ssstik", SSSTIK_URL, {"url": url}, video_id)),
        ]
        for name, method in methods:
            try:
                return await method()
            except (ResolverError, httpx.HTTPError) as e:
                logger.info("douyin_backend_failed", backend=name, video_id=video_id, error=str(e))

        raise UpstreamError("Could not fetch Douyin video information. It may require login or have been removed")

    async def _tikvideo(self, url: str, video_id: str) -> VideoInfo:
        payload = await self.fetch_json(
            "POST",
            TIKVIDEO_API_URL,
            data={"q": url, "lang": "en", "cftoken": ""},
            headers={"X-Requested-With": "XMLHttpRequest", "Referer": TIKVIDEO_REFERER},
        )
        if not isinstance(payload, dict) or payload.get("status") != "ok" or not payload.get("data"):
            raise UpstreamError("tikvideo: lookup failed")
        return parse_tikvideo(payload["data"], video_id)

    async def _douyin_wtf(self, video_id: str) -> VideoInfo:
        payload = await self.fetch_json(
            "GET",
            DOUYIN_WTF_API_URL,
            params={"url": canonical_url(video_id)},
            headers={"Accept": "application/json"},
        )
        return parse_douyin_wtf(video_id, payload)

    async def _scrape(self, name: str, endpoint: str, form: Dict[str, str], video_id: str) -> VideoInfo:
        response = await self.fetch("POST", endpoint, data=form, headers={"User-Agent": DESKTOP_USER_AGENT})
        link = first_mp4_link(response.text)
        if not link:
            raise UpstreamError(f"{name}: no video link")
        return VideoInfo(
            id=video_id,
            platform=Platform.DOUYIN,
            title=DEFAULT_TITLE,
            formats=_single_format(video_id, link),
            original_url=canonical_url(video_id),
        )
