"""Download-side services: orchestration, batching and the remote job client."""

from mediagrab.services.batch import BatchCoordinator, BatchSummary
from mediagrab.services.normalizer import normalize_formats
from mediagrab.services.orchestrator import CancellationToken, DownloadOrchestrator, decide_route
from mediagrab.services.remote_client import RemoteServiceClient

__all__ = [
    "BatchCoordinator",
    "BatchSummary",
    "CancellationToken",
    "DownloadOrchestrator",
    "RemoteServiceClient",
    "decide_route",
    "normalize_formats",
]
