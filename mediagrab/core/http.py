"""Outbound HTTP client factory and anti-hotlinking header rules."""

from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

import httpx

from mediagrab.core.config import DEFAULT_USER_AGENT, HttpConfig

# CDN host fragments that reject requests without an origin-matching Referer.
REFERER_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("bilivideo", "hdslb", "bilibili"), "https://www.bilibili.com/"),
    (("phncdn", "pornhub"), "https://www.pornhub.com/"),
    (("xhscdn", "xiaohongshu"), "https://www.xiaohongshu.com/"),
)


def referer_for(url: str) -> Optional[str]:
    """Return the Referer a CDN expects for ``url``, or None when no rule matches."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return None
    for fragments, referer in REFERER_RULES:
        if any(fragment in host for fragment in fragments):
            return referer
    return None


def browser_headers(
    url: str, referer: Optional[str] = None, user_agent: str = DEFAULT_USER_AGENT
) -> Dict[str, str]:
    """Headers that make an outbound fetch look like a regular browser request.

    Args:
        url: Target URL, used to pick a Referer from REFERER_RULES.
        referer: Explicit Referer hint, wins over the rule table.
        user_agent: User-Agent header value.

    Returns:
        Header dictionary.
    """
    headers = {"User-Agent": user_agent, "Accept": "*/*"}
    chosen = referer or referer_for(url)
    if chosen:
        headers["Referer"] = chosen
    return headers


def create_http_client(
    config: Optional[HttpConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the shared async client used by resolvers and the orchestrator.

    Args:
        config: HTTP section of the app config. Defaults are used when None.
        transport: Optional transport override, e.g. ``httpx.MockTransport`` in tests.

    Returns:
        A configured ``httpx.AsyncClient``. The caller owns closing it.
    """
    config = config or HttpConfig()
    return httpx.AsyncClient(
        timeout=config.timeout,
        follow_redirects=True,
        headers={"User-Agent": config.user_agent},
        transport=transport,
    )
