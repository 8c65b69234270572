"""Thumbnail proxy for hotlink-protected image CDNs."""

import httpx
import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from mediagrab.core.errors import APIError, ErrorCode
from mediagrab.core.http import browser_headers
from mediagrab.core.validation import url_validator
from mediagrab.services.exceptions import UpstreamFailureError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["media"])

CACHE_CONTROL = "public, max-age=86400"
DEFAULT_IMAGE_TYPE = "image/jpeg"


async def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client."""
    raise NotImplementedError("HTTP client dependency not configured")


@router.get("/image-proxy", response_class=Response)
async def image_proxy(
    url: str = Query(..., description="Image URL"),  # noqa: B008
    client: httpx.AsyncClient = Depends(get_http_client),  # noqa: B008
) -> Response:
    """
    Fetch an image with the Referer its CDN expects and return it.

    Responses are cacheable for a day.
    """
    validation = url_validator.validate(url)
    if not validation.is_valid:
        raise APIError(ErrorCode.INVALID_INPUT, validation.error_message or "Invalid URL")

    try:
        upstream = await client.get(url, headers=browser_headers(url))
    except httpx.HTTPError as e:
        logger.warning("image_proxy_failed", url=url, error=str(e))
        raise UpstreamFailureError(f"Image request failed: {type(e).__name__}") from e

    if not upstream.is_success:
        raise UpstreamFailureError(f"HTTP {upstream.status_code}", status_code=upstream.status_code)

    return Response(
        content=upstream.content,
        media_type=upstream.headers.get("content-type") or DEFAULT_IMAGE_TYPE,
        headers={"Cache-Control": CACHE_CONTROL},
    )
