"""FastAPI application entry point.

This module assembles all components and creates the main application.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from mediagrab import __version__
from mediagrab.api import download, health, image_proxy, metrics, resolve
from mediagrab.core.config import ConfigService, MonitoringConfig, ServerConfig
from mediagrab.core.errors import APIError, global_exception_handler
from mediagrab.core.http import create_http_client
from mediagrab.core.logging import configure_logging
from mediagrab.core.metrics import MetricsCollector, initialize_metrics
from mediagrab.middleware.request_id import RequestIDMiddleware
from mediagrab.resolvers.chain import ResolverChain, build_chain
from mediagrab.resolvers.exceptions import ResolverError
from mediagrab.services.batch import BatchCoordinator
from mediagrab.services.exceptions import DownloadFailure
from mediagrab.services.orchestrator import DownloadOrchestrator
from mediagrab.services.remote_client import RemoteServiceClient

logger = structlog.get_logger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics.

    Records request count and duration for all endpoints,
    using FastAPI route templates to normalize paths.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request and record metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Fixed label for unmatched routes keeps cardinality bounded
        route = request.scope.get("route")
        endpoint = route.path if route else "/unmatched"

        MetricsCollector.record_request(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
            duration=duration,
        )

        return response


# Global service instances
_http_client: Optional[httpx.AsyncClient] = None
_remote_client: Optional[RemoteServiceClient] = None
_resolver_chain: Optional[ResolverChain] = None
_orchestrator: Optional[DownloadOrchestrator] = None
_batch_coordinator: Optional[BatchCoordinator] = None


def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client."""
    if _http_client is None:
        raise RuntimeError("HTTP client not configured")
    return _http_client


def get_remote_client() -> RemoteServiceClient:
    """Get the global remote service client."""
    if _remote_client is None:
        raise RuntimeError("Remote service client not configured")
    return _remote_client


def get_resolver_chain() -> ResolverChain:
    """Get the global resolver chain."""
    if _resolver_chain is None:
        raise RuntimeError("Resolver chain not configured")
    return _resolver_chain


def get_orchestrator() -> DownloadOrchestrator:
    """Get the global download orchestrator."""
    if _orchestrator is None:
        raise RuntimeError("Download orchestrator not configured")
    return _orchestrator


def get_batch_coordinator() -> BatchCoordinator:
    """Get the global batch coordinator."""
    if _batch_coordinator is None:
        raise RuntimeError("Batch coordinator not configured")
    return _batch_coordinator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown."""
    global _http_client, _remote_client, _resolver_chain, _orchestrator, _batch_coordinator

    logger.info("application_starting", version=__version__)

    initialize_metrics(__version__)

    config = ConfigService().load()
    configure_logging(config.logging.level, config.logging.format)

    logger.info(
        "configuration_loaded",
        server_port=config.server.port,
        remote_base_url=config.remote.base_url,
        youtube_remote_first=config.youtube.remote_first,
    )

    _http_client = create_http_client(config.http)
    _remote_client = RemoteServiceClient(_http_client, config.remote)

    _resolver_chain = build_chain(_http_client, config, _remote_client)
    logger.info("resolver_chain_configured", resolvers=_resolver_chain.list_resolvers())

    _orchestrator = DownloadOrchestrator(
        _http_client,
        _remote_client,
        downloads=config.downloads,
        remote_config=config.remote,
        http=config.http,
    )
    _batch_coordinator = BatchCoordinator(_resolver_chain, config.batch)
    logger.info("application_startup_complete", version=__version__)

    yield

    logger.info("application_shutting_down")
    await _http_client.aclose()
    _http_client = None
    logger.info("application_shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="mediagrab",
        description="Resolve video page URLs across platforms and deliver the media",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Default ["*"] for development; override via APP_SERVER_CORS_ORIGINS
    server_config = ServerConfig()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "Content-Length", "X-Request-ID"],
    )

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Register global exception handlers
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(HTTPException, global_exception_handler)
    app.add_exception_handler(APIError, global_exception_handler)
    app.add_exception_handler(DownloadFailure, global_exception_handler)
    app.add_exception_handler(ResolverError, global_exception_handler)

    # Override dependency injection for routers
    app.dependency_overrides[resolve.get_resolver_chain] = get_resolver_chain
    app.dependency_overrides[resolve.get_batch_coordinator] = get_batch_coordinator
    app.dependency_overrides[download.get_orchestrator] = get_orchestrator
    app.dependency_overrides[image_proxy.get_http_client] = get_http_client
    app.dependency_overrides[health.get_remote_client] = get_remote_client

    # Register routers
    app.include_router(health.router)
    app.include_router(resolve.router)
    app.include_router(download.router)
    app.include_router(image_proxy.router)
    if MonitoringConfig().metrics_enabled:
        app.include_router(metrics.router)

    return app


# Create the application instance
app = create_app()


def run() -> None:
    """Console entry point."""
    server = ServerConfig()
    uvicorn.run(app, host=server.host, port=server.port)


if __name__ == "__main__":
    run()
