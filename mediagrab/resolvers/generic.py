"""Generic page scraper.

Fetches the raw page and heuristically extracts media links and metadata:
escaped-slash unescaping, HLS then MP4 link matching, JSON-LD VideoObject and
og:video tags, and a few thumbnail heuristics. Results are always tagged
``Platform.OTHER``; the chain overrides that with the detected platform.
"""

import json
import re
from typing import Any, Dict, Iterator, List, Optional

import structlog
from bs4 import BeautifulSoup

from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import PLACEHOLDER_TITLE, ResolveOptions, Resolver, stable_id
from mediagrab.resolvers.exceptions import UpstreamError, VideoUnavailableError

logger = structlog.get_logger(__name__)

_TITLE_SUFFIX = re.compile(r"\s*[-|].*$")
_M3U8 = re.compile(r"""(https?://[^"'\s]+\.m3u8[^"'\s]*)""", re.IGNORECASE)
_MP4 = re.compile(r"""(https?://[^"'\s]+\.mp4[^"'\s]*)""", re.IGNORECASE)
_TRAILING_QUOTES = re.compile(r"""[",']+$""")
_OG_VIDEO = re.compile(r"^og:video(?::url|:secure_url)?$", re.IGNORECASE)
_LAZY_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
_ISO_DURATION = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?$")

_SKIPPED_IMAGE_HINTS = ("logo", "icon", "avatar", "loading")
_CONTENT_IMAGE_HINTS = ("upload", "pic", "image")


def is_cloudflare_block(html: str) -> bool:
    return "Cloudflare" in html and ("been blocked" in html or "Attention Required" in html)


def extract_title(soup: BeautifulSoup) -> str:
    if soup.title is None or not soup.title.string:
        return PLACEHOLDER_TITLE
    return _TITLE_SUFFIX.sub("", soup.title.string.strip()) or PLACEHOLDER_TITLE


def extract_media_links(html: str) -> List[VideoFormat]:
    """Find HLS manifests first, then MP4 files, each URL once."""
    unescaped = html.replace("\\/", "/")
    formats: List[VideoFormat] = []
    seen = set()

    for pattern, prefix, quality, container in (
        (_M3U8, "m3u8", "HLS", "m3u8"),
        (_MP4, "mp4", "MP4", "mp4"),
    ):
        for match in pattern.finditer(unescaped):
            link = _TRAILING_QUOTES.sub("", match.group(1))
            if link in seen:
                continue
            seen.add(link)
            formats.append(
                VideoFormat(id=f"{prefix}-{len(formats)}", quality=quality, url=link, container=container)
            )
    return formats


def _iter_json_ld_objects(soup: BeautifulSoup) -> Iterator[Dict[str, Any]]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.get_text().strip())
        except ValueError:
            continue
        stack = [data]
        while stack:
            item = stack.pop()
            if isinstance(item, list):
                stack.extend(item)
            elif isinstance(item, dict):
                if "@graph" in item:
                    stack.append(item["@graph"])
                yield item


def parse_iso_duration(value: Any) -> int:
    match = _ISO_DURATION.match(str(value or ""))
    if not match:
        return 0
    hours, minutes, seconds = match.groups()
    return int(hours or 0) * 3600 + int(minutes or 0) * 60 + int(float(seconds or 0))


def find_video_object(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    """Return the first JSON-LD object typed VideoObject, if any."""
    for item in _iter_json_ld_objects(soup):
        kind = item.get("@type")
        kinds = kind if isinstance(kind, list) else [kind]
        if "VideoObject" in kinds:
            return item
    return None


def _first_str(value: Any) -> str:
    if isinstance(value, list):
        value = value[0] if value else ""
    if isinstance(value, dict):
        value = value.get("url") or value.get("contentUrl") or ""
    return value if isinstance(value, str) else ""


def _meta_content(soup: BeautifulSoup, **attrs: Any) -> str:
    tag = soup.find("meta", attrs=attrs)
    return str(tag.get("content") or "").strip() if tag else ""


def extract_thumbnail(soup: BeautifulSoup) -> str:
    thumbnail = _meta_content(soup, property="og:image") or _meta_content(soup, name="twitter:image")
    if thumbnail:
        return thumbnail

    for img in soup.find_all("img", src=True):
        src = str(img["src"])
        if any(hint in src for hint in _SKIPPED_IMAGE_HINTS):
            continue
        if src.startswith("data:") or src.endswith(".svg"):
            continue
        if any(hint in src for hint in _CONTENT_IMAGE_HINTS):
            return src

    for img in soup.find_all("img"):
        lazy = str(img.get("data-src") or img.get("data-original") or "")
        if lazy.lower().endswith(_LAZY_IMAGE_EXTENSIONS):
            return lazy
    return ""


def extract_og_videos(soup: BeautifulSoup) -> List[str]:
    links: List[str] = []
    # Some sites put Open Graph keys in name= instead of property=
    for key in ("property", "name"):
        for tag in soup.find_all("meta", attrs={key: _OG_VIDEO}):
            link = str(tag.get("content") or "").strip()
            if link.startswith("http") and link not in links:
                links.append(link)
    return links


def parse_page(html: str, url: str) -> VideoInfo:
    """Extract a VideoInfo from raw page markup.

    Raises:
        VideoUnavailableError: If the page is a Cloudflare block or holds no media
    """
    if is_cloudflare_block(html):
        raise VideoUnavailableError(
            "The site is protected by Cloudflare and blocked the server. "
            "Capture the media link in the browser instead"
        )

    soup = BeautifulSoup(html, "html.parser")
    formats = extract_media_links(html)
    seen = {f.url for f in formats}
    title = extract_title(soup)
    thumbnail = extract_thumbnail(soup)
    description = ""
    duration = 0

    video_object = find_video_object(soup)
    if video_object:
        content_url = _first_str(video_object.get("contentUrl"))
        if content_url and content_url not in seen:
            seen.add(content_url)
            formats.append(VideoFormat(id=f"ld-{len(formats)}", quality="Source", url=content_url))
        if title == PLACEHOLDER_TITLE and video_object.get("name"):
            title = str(video_object["name"])
        thumbnail = thumbnail or _first_str(video_object.get("thumbnailUrl"))
        description = str(video_object.get("description") or "")
        duration = parse_iso_duration(video_object.get("duration"))

    for link in extract_og_videos(soup):
        if link not in seen:
            seen.add(link)
            container = "m3u8" if ".m3u8" in link else "mp4"
            formats.append(VideoFormat(id=f"og-{len(formats)}", quality="Source", url=link, container=container))

    if not formats:
        raise VideoUnavailableError("No video links found on the page")

    return VideoInfo(
        id=stable_id(url, "generic"),
        platform=Platform.OTHER,
        title=title,
        description=description,
        thumbnail=thumbnail,
        duration=duration,
        formats=formats,
        original_url=url,
    )


class GenericResolver(Resolver):
    """Scrapes arbitrary pages for embedded media."""

    name = "generic"
    platform = Platform.OTHER

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        response = await self.client.get(url, headers={"User-Agent": self.user_agent})
        if not response.is_success:
            raise UpstreamError(f"Could not open the page (HTTP {response.status_code})")

        html = response.text
        logger.debug("generic_page_fetched", url=url, length=len(html))
        info = parse_page(html, url)
        logger.debug("generic_media_found", url=url, formats=len(info.formats))
        return info
