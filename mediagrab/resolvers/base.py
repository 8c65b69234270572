"""Abstract base class for resolvers."""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
import structlog

from mediagrab.core.config import DEFAULT_USER_AGENT
from mediagrab.models.video import Platform, ResolveResult, VideoInfo
from mediagrab.resolvers.exceptions import ResolverError, UpstreamError

logger = structlog.get_logger(__name__)

# Title used by scrapers that could not find one; never treated as meaningful.
PLACEHOLDER_TITLE = "Untitled"

_FILE_EXTENSION_SUFFIX = "."


@dataclass
class ResolveOptions:
    """Per-request hints passed to every resolver.

    ``credentials`` maps a platform value (e.g. "bilibili") to a session
    credential. Resolvers that need none ignore it.
    """

    credentials: Dict[str, str] = field(default_factory=dict)

    def credential(self, platform: Platform) -> Optional[str]:
        value = self.credentials.get(platform.value)
        return value.strip() if value and value.strip() else None


def is_meaningful_title(title: Optional[str]) -> bool:
    return bool(title and title.strip() and title.strip() != PLACEHOLDER_TITLE)


def strip_extension(filename: Optional[str]) -> str:
    """Drop a trailing file extension from a backend-suggested filename."""
    if not filename:
        return ""
    head, sep, tail = filename.rpartition(_FILE_EXTENSION_SUFFIX)
    if sep and head and "/" not in tail:
        return head
    return filename


def https(url: Optional[str]) -> str:
    """Upgrade protocol-relative and plain-http asset URLs to https."""
    if not url:
        return ""
    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith("http://"):
        return "https://" + url[len("http://") :]
    return url


class Resolver(ABC):
    """One strategy that turns a URL into a VideoInfo.

    Subclasses implement ``extract`` and raise ``ResolverError`` subclasses on
    failure; ``resolve`` is the boundary that converts those into
    ``ResolveResult.failure`` so callers never need exception handling.
    """

    name: str = "resolver"
    platform: Platform = Platform.OTHER

    def __init__(self, client: httpx.AsyncClient, user_agent: str = DEFAULT_USER_AGENT):
        self.client = client
        self.user_agent = user_agent

    @abstractmethod
    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        """Resolve ``url`` into canonical metadata.

        Args:
            url: Normalized absolute URL
            options: Per-request hints

        Returns:
            VideoInfo with at least one format or image

        Raises:
            InvalidURLError: If the URL lacks the id this resolver needs
            UpstreamError: If a backend answers with an error or bad payload
            VideoUnavailableError: If the content is gone or private
        """
        pass

    async def resolve(self, url: str, options: Optional[ResolveOptions] = None) -> ResolveResult:
        try:
            info = await self.extract(url, options or ResolveOptions())
        except ResolverError as e:
            logger.debug("resolver_error", resolver=self.name, url=url, error=str(e))
            return ResolveResult.failure(str(e))
        except httpx.HTTPError as e:
            logger.debug("resolver_http_error", resolver=self.name, url=url, error=str(e))
            return ResolveResult.failure(f"{self.name}: request failed ({type(e).__name__})")
        return ResolveResult.ok(info)

    def headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "*/*",
            "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
        }
        if extra:
            headers.update(extra)
        return headers

    async def fetch(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request with browser headers, raising UpstreamError on non-2xx."""
        headers = self.headers(kwargs.pop("headers", None))
        response = await self.client.request(method, url, headers=headers, **kwargs)
        if not response.is_success:
            raise UpstreamError(f"{self.name}: HTTP {response.status_code} from {response.url.host}")
        return response

    async def fetch_json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self.fetch(method, url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"{self.name}: malformed JSON payload") from e

    async def final_url(self, url: str, method: str = "HEAD", headers: Optional[Dict[str, str]] = None) -> str:
        """Follow redirects (short links) and return the landing URL; the input on failure."""
        try:
            response = await self.client.request(
                method, url, headers=self.headers(headers), follow_redirects=True
            )
        except httpx.HTTPError as e:
            logger.debug("redirect_expand_failed", resolver=self.name, url=url, error=str(e))
            return url
        return str(response.url)


def stable_id(url: str, prefix: str = "url") -> str:
    """Deterministic id for backends that do not return one."""
    return f"{prefix}-{hashlib.sha1(url.encode('utf-8')).hexdigest()[:12]}"
