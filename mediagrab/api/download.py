"""Download API endpoint.

POST /api/v1/download relays bytes from the media host or from the remote
transcoding service. A client disconnect cancels every in-flight call of
the download, including remote polling.
"""

import asyncio
from typing import Any, AsyncIterator, Dict

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from mediagrab.api.schemas import DownloadRedirectResponse, DownloadRequest, ErrorDetail
from mediagrab.core.validation import content_disposition
from mediagrab.services.exceptions import DownloadCancelled
from mediagrab.services.orchestrator import (
    CancellationToken,
    DownloadOrchestrator,
    DownloadRedirect,
    DownloadStream,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["download"])

DISCONNECT_POLL_SECONDS = 1.0


# Dependency placeholder (to be configured in main app)
async def get_orchestrator() -> DownloadOrchestrator:
    """Get download orchestrator instance."""
    raise NotImplementedError("Download orchestrator dependency not configured")


async def watch_disconnect(request: Request, token: CancellationToken) -> None:
    """Cancel ``token`` once the client goes away."""
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("client_disconnected", path=request.url.path)
            token.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def stream_headers(stream: DownloadStream) -> Dict[str, str]:
    headers = {
        "Content-Disposition": content_disposition(stream.filename),
        "Cache-Control": "no-cache",
        "Access-Control-Expose-Headers": "Content-Disposition, Content-Length",
    }
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    return headers


async def relay(stream: DownloadStream, watcher: "asyncio.Task[None]") -> AsyncIterator[bytes]:
    """Yield the upstream body; a cancelled download simply ends the stream."""
    try:
        async for chunk in stream.iter_chunks():
            yield chunk
    except DownloadCancelled:
        return
    finally:
        watcher.cancel()
        await stream.aclose()


@router.post(
    "/download",
    responses={
        200: {"description": "File stream, or a JSON redirect for link-only completions"},
        400: {"model": ErrorDetail, "description": "Invalid request"},
        413: {"model": ErrorDetail, "description": "File exceeds the direct download limit"},
        499: {"model": ErrorDetail, "description": "Cancelled by the client"},
        502: {"model": ErrorDetail, "description": "Media host or remote job failed"},
        504: {"model": ErrorDetail, "description": "Remote job timed out"},
    },
)
async def download(
    body: DownloadRequest,
    request: Request,
    orchestrator: DownloadOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> Any:
    """
    Download a media file.

    Plain downloads are proxied directly. Merging, trimming, audio
    extraction, explicit format ids and HLS sources go through the remote
    transcoding service.

    Returns:
        StreamingResponse with Content-Type, Content-Disposition and, when
        known, Content-Length; or a small JSON body with a final link

    Raises:
        DownloadFailure: Converted to ErrorDetail by the global handler
    """
    job = body.to_job()
    token = CancellationToken()
    watcher = asyncio.create_task(watch_disconnect(request, token))

    try:
        outcome = await orchestrator.execute(job, token)
    except BaseException:
        watcher.cancel()
        raise

    if isinstance(outcome, DownloadRedirect):
        watcher.cancel()
        return DownloadRedirectResponse(download_url=outcome.url, filename=outcome.filename)

    logger.info(
        "download_streaming",
        route=outcome.route.value,
        filename=outcome.filename,
        content_length=outcome.content_length,
    )
    return StreamingResponse(
        relay(outcome, watcher),
        media_type=outcome.content_type,
        headers=stream_headers(outcome),
    )
