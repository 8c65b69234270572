"""Resolution endpoints: single URL, batch and normalized format views."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from mediagrab.api.schemas import (
    BatchResolveRequest,
    BatchResolveResponse,
    FormatsRequest,
    FormatsResponse,
    ResolveRequest,
    ResolveResponse,
    VideoInfoResponse,
)
from mediagrab.core.errors import APIError, ErrorCode
from mediagrab.resolvers.base import ResolveOptions
from mediagrab.resolvers.chain import ResolverChain
from mediagrab.services.batch import BatchCoordinator
from mediagrab.services.normalizer import AUTO_CODEC, normalize_formats

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["resolve"])


# Dependency placeholders, overridden in create_app
async def get_resolver_chain() -> ResolverChain:
    """Get resolver chain instance."""
    raise NotImplementedError("Resolver chain dependency not configured")


async def get_batch_coordinator() -> BatchCoordinator:
    """Get batch coordinator instance."""
    raise NotImplementedError("Batch coordinator dependency not configured")


@router.post(
    "/resolve",
    response_model=ResolveResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ResolveResponse, "description": "No resolver could handle the URL"},
    },
)
async def resolve(
    request: ResolveRequest,
    chain: ResolverChain = Depends(get_resolver_chain),  # noqa: B008
) -> Any:
    """
    Resolve a video page URL into metadata and downloadable formats.

    Every resolution strategy is tried in order until one succeeds. On
    failure the reason from the last attempted strategy is returned with
    HTTP 400.
    """
    logger.info("resolve_requested", url=request.url)

    result = await chain.resolve(request.url, ResolveOptions(credentials=request.credentials))
    if not result.success or result.data is None:
        body = ResolveResponse(success=False, error=result.error)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(by_alias=True, exclude_none=True),
        )

    return ResolveResponse(success=True, data=VideoInfoResponse.from_info(result.data))


@router.post("/resolve/batch", response_model=BatchResolveResponse)
async def resolve_batch(
    request: BatchResolveRequest,
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),  # noqa: B008
) -> Any:
    """
    Resolve several URLs with bounded concurrency.

    Results that share a platform and id with an earlier result are counted
    as duplicates and omitted.
    """
    try:
        summary = await coordinator.run(
            request.urls, ResolveOptions(credentials=request.credentials)
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": ErrorCode.INVALID_INPUT, "message": str(e)},
        )
    return BatchResolveResponse.from_summary(summary)


@router.post("/formats", response_model=FormatsResponse)
async def list_formats(
    request: FormatsRequest,
    chain: ResolverChain = Depends(get_resolver_chain),  # noqa: B008
) -> Any:
    """
    Resolve a URL and return its formats split into views.

    Each view carries the full best-first list and a display list
    de-duplicated by resolution and frame rate, after the optional codec
    filter.
    """
    result = await chain.resolve(request.url, ResolveOptions(credentials=request.credentials))
    if not result.success or result.data is None:
        raise APIError(ErrorCode.UNSUPPORTED_PLATFORM, result.error or "Could not resolve this link")

    normalized = normalize_formats(result.data.formats)
    codec = request.codec.upper() if request.codec.lower() != AUTO_CODEC else AUTO_CODEC
    return FormatsResponse.from_normalized(result.data, normalized, codec)
