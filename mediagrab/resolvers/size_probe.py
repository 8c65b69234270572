"""Best-effort size backfill for formats that came without a byte count."""

import asyncio
import re
from typing import Dict, List, Optional

import httpx
import structlog

from mediagrab.core.config import EnrichmentConfig
from mediagrab.core.http import browser_headers
from mediagrab.core.metrics import MetricsCollector
from mediagrab.models.video import VideoFormat

logger = structlog.get_logger(__name__)

_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)\s*$")
MEDIA_TYPE_PREFIXES = ("video/", "audio/", "application/octet-stream")

def is_media_type(content_type: str) -> bool:
    return content_type.lower().startswith(MEDIA_TYPE_PREFIXES)

def total_from_content_range(value: Optional[str]) -> Optional[int]:
    """Parse the total out of ``Content-Range: bytes 0-0/123456``."""
    if not value:
        return None
    match = _CONTENT_RANGE_TOTAL.search(value)
    return int(match.group(1)) if match else None

async def _head_size(client: httpx.AsyncClient, url: str, headers: Dict[str, str], timeout: float) -> Optional[int]:
    head = await client.head(url, headers=headers, timeout=timeout)
    length = head.headers.get("content-length", "")
    if head.is_success and length.isdigit() and int(length) > 0:
        if is_media_type(head.headers.get("content-type", "")):
            return int(length)
    return None

async def _range_size(client: httpx.AsyncClient, url: str, headers: Dict[str, str], timeout: float) -> Optional[int]:
    # Only the headers are read; hosts that ignore Range would otherwise send the whole file.
    async with client.stream("GET", url, headers={**headers, "Range": "bytes=0-0"}, timeout=timeout) as ranged:
        return total_from_content_range(ranged.headers.get("content-range"))

async def probe_size(client: httpx.AsyncClient, url: str, timeout: float = 3.0) -> Optional[int]:
    """Find the byte size of ``url`` with a HEAD, then a one-byte ranged GET.

    Each request is bounded by ``timeout`` as a whole, not only per read.

    Returns:
        Size in bytes, or None when neither request yields one
    """
    headers = browser_headers(url)

    try:
        size = await asyncio.wait_for(_head_size(client, url, headers, timeout), timeout)
        if size is not None:
            MetricsCollector.record_size_probe("head", "success")
            return size
    except (httpx.HTTPError, asyncio.TimeoutError) as e:
        logger.debug("size_probe_head_failed", url=url, error=str(e) or type(e).__name__)

    try:
        size = await asyncio.wait_for(_range_size(client, url, headers, timeout), timeout)
    except (httpx.HTTPError, asyncio.TimeoutError) as e:
        logger.debug("size_probe_range_failed", url=url, error=str(e) or type(e).__name__)
        MetricsCollector.record_size_probe("range", "failure")
        return None

    MetricsCollector.record_size_probe("range", "success" if size else "failure")
    return size


async def backfill_sizes(
    client: httpx.AsyncClient,
    formats: List[VideoFormat],
    config: Optional[EnrichmentConfig] = None,
) -> int:
    """Concurrently probe every format missing a size, writing results in place.

    Individual probe failures are ignored.

    Returns:
        Number of formats that gained a size
    """
    config = config or EnrichmentConfig()
    pending = [f for f in formats if not f.size]
    if not config.size_probe_enabled or not pending:
        return 0

    results = await asyncio.gather(
        *(probe_size(client, f.url, config.size_probe_timeout) for f in pending),
        return_exceptions=True,
    )

    filled = 0
    for fmt, result in zip(pending, results):
        if isinstance(result, int) and result > 0:
            fmt.size = result
            filled += 1
        elif isinstance(result, BaseException):
            logger.debug("size_probe_error", url=fmt.url, error=str(result))
    logger.debug("size_probe_finished", probed=len(pending), filled=filled)
    return filled
