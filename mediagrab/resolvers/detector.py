"""Platform detection and URL helpers.

Detection is a pure function of the URL host; it performs no network calls
and never raises.
"""

import re
from typing import Dict, FrozenSet, Optional
from urllib.parse import parse_qs, urlparse

from mediagrab.models.video import Platform

PLATFORM_DOMAINS: Dict[Platform, FrozenSet[str]] = {
    Platform.YOUTUBE: frozenset({"youtube.com", "youtu.be", "www.youtube.com", "m.youtube.com"}),
    Platform.TIKTOK: frozenset({"tiktok.com", "vm.tiktok.com", "www.tiktok.com", "vt.tiktok.com"}),
    Platform.TWITTER: frozenset({"twitter.com", "x.com", "www.twitter.com", "www.x.com"}),
    Platform.INSTAGRAM: frozenset({"instagram.com", "www.instagram.com", "instagr.am"}),
    Platform.DOUYIN: frozenset({"douyin.com", "www.douyin.com", "v.douyin.com", "iesdouyin.com"}),
    Platform.XIAOHONGSHU: frozenset({"xiaohongshu.com", "www.xiaohongshu.com", "xhslink.com"}),
    Platform.WECHAT: frozenset({"channels.weixin.qq.com", "finder.video.qq.com"}),
    Platform.BILIBILI: frozenset(
        {"bilibili.com", "www.bilibili.com", "m.bilibili.com", "b23.tv", "bilibili.tv"}
    ),
    Platform.ADULT_VIDEO: frozenset(
        {
            "pornhub.com",
            "pornhub.org",
            "91porn.com",
            "91porna.com",
            "xvideos.com",
            "xhamster.com",
            "xhamster.one",
            "xnxx.com",
            "redtube.com",
            "youporn.com",
            "spankbang.com",
            "spankbang.party",
        }
    ),
}

_SCHEME = re.compile(r"^https?://", re.IGNORECASE)

_VIDEO_ID_PATTERNS: Dict[Platform, "re.Pattern[str]"] = {
    Platform.TIKTOK: re.compile(r"/video/(\d+)"),
    Platform.TWITTER: re.compile(r"/status/(\d+)"),
    Platform.INSTAGRAM: re.compile(r"/(?:p|reel|reels)/([A-Za-z0-9_-]+)"),
    Platform.DOUYIN: re.compile(r"/(?:video|note)/(\d+)"),
    Platform.XIAOHONGSHU: re.compile(r"/explore/([A-Za-z0-9]+)"),
    Platform.BILIBILI: re.compile(r"(BV[A-Za-z0-9]+|av\d+)"),
}
_YOUTUBE_PATH_ID = re.compile(r"/(?:shorts|embed|live)/([A-Za-z0-9_-]+)")


def normalize(raw: str) -> str:
    """Trim whitespace and prepend https:// when the input has no http(s) scheme."""
    url = (raw or "").strip()
    if url and not _SCHEME.match(url):
        url = f"https://{url}"
    return url


def host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def detect(url: str) -> Platform:
    """Map a URL to its hosting platform.

    Args:
        url: Absolute URL (see ``normalize``).

    Returns:
        The matching platform, or ``Platform.UNKNOWN`` for unmatched or
        malformed URLs.
    """
    try:
        host = (urlparse(url).hostname or "").lower()
    except (ValueError, TypeError, AttributeError):
        return Platform.UNKNOWN
    if not host:
        return Platform.UNKNOWN

    for platform, domains in PLATFORM_DOMAINS.items():
        if any(host_matches(host, domain) for domain in domains):
            return platform
    return Platform.UNKNOWN


def extract_video_id(url: str, platform: Platform) -> Optional[str]:
    """Extract the platform-local content id from a page URL, if recognizable."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None

    if platform == Platform.YOUTUBE:
        if (parsed.hostname or "").lower().endswith("youtu.be"):
            video_id = parsed.path.strip("/").split("/")[0]
            return video_id or None
        query_id = parse_qs(parsed.query).get("v")
        if query_id and query_id[0]:
            return query_id[0]
        match = _YOUTUBE_PATH_ID.search(parsed.path)
        return match.group(1) if match else None

    pattern = _VIDEO_ID_PATTERNS.get(platform)
    if pattern is None:
        return None
    match = pattern.search(parsed.path)
    return match.group(1) if match else None
