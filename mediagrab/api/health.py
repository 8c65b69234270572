"""Health check endpoints.

/health reports the remote transcoding service as a component; /health/live
and /health/ready serve container probes.
"""

import time
from datetime import datetime, timezone
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from mediagrab import __version__
from mediagrab.api.schemas import ComponentHealth, HealthResponse, LivenessResponse, ReadinessResponse
from mediagrab.services.remote_client import RemoteServiceClient

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])

# Track application start time for uptime calculation
_start_time: float = time.time()


async def get_remote_client() -> RemoteServiceClient:
    """Get remote service client instance."""
    raise NotImplementedError("Remote service client dependency not configured")


async def _check_remote(remote: RemoteServiceClient) -> ComponentHealth:
    """Check the remote transcoding service via its own health endpoint."""
    start = time.time()
    payload = await remote.health()
    latency_ms = int((time.time() - start) * 1000)

    if payload.get("status") == "ok":
        return ComponentHealth(
            status="healthy",
            details={"latency_ms": latency_ms, "ffmpeg": payload.get("ffmpeg")},
        )
    return ComponentHealth(
        status="unhealthy",
        details={"error": payload.get("error") or "Remote service reported an error"},
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        200: {"description": "Service up; remote service may be degraded"},
    },
)
async def health_check(
    remote: RemoteServiceClient = Depends(get_remote_client),  # noqa: B008
) -> JSONResponse:
    """
    Detailed health check endpoint.

    Resolution keeps working when the remote service is down, only remote
    downloads and the last fallback are lost, so an unhealthy remote is
    reported as ``degraded`` with HTTP 200.
    """
    components = {"remote_service": await _check_remote(remote)}

    all_healthy = all(c.status == "healthy" for c in components.values())
    overall_status: Literal["healthy", "degraded"] = "healthy" if all_healthy else "degraded"

    response = HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        components=components,
    )

    logger.info(
        "health_check_completed",
        status=overall_status,
        components={k: v.status for k, v in components.items()},
    )

    return JSONResponse(content=response.model_dump(), status_code=status.HTTP_200_OK)


@router.get("/health/live", response_model=LivenessResponse)
async def liveness_check() -> LivenessResponse:
    """
    Liveness probe endpoint.

    Returns HTTP 200 if the process is alive.
    """
    return LivenessResponse(status="alive")


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Service is ready to accept traffic"},
        503: {"description": "Service is not ready"},
    },
)
async def readiness_check(
    remote: RemoteServiceClient = Depends(get_remote_client),  # noqa: B008
) -> JSONResponse:
    """
    Readiness probe endpoint.

    Ready when the remote transcoding service answers its health check.
    """
    remote_health = await _check_remote(remote)
    if remote_health.status != "healthy":
        response = ReadinessResponse(
            status="not_ready",
            ready=False,
            message="Remote service unreachable",
        )
        return JSONResponse(
            content=response.model_dump(),
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return JSONResponse(
        content=ReadinessResponse(status="ready", ready=True).model_dump(),
        status_code=status.HTTP_200_OK,
    )
