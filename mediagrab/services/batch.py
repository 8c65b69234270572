"""Batch resolution with bounded concurrency and duplicate detection."""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Set, Tuple

import structlog

from mediagrab.core.config import BatchConfig
from mediagrab.core.metrics import MetricsCollector
from mediagrab.models.video import ResolveResult, VideoInfo
from mediagrab.resolvers.base import ResolveOptions

logger = structlog.get_logger(__name__)

BatchProgressCallback = Callable[[int, int], None]


class Resolves(Protocol):
    async def resolve(self, raw_url: str, options: Optional[ResolveOptions] = None) -> ResolveResult:
        ...


@dataclass
class BatchError:
    url: str
    error: str


@dataclass
class BatchSummary:
    """Aggregate outcome of one batch. ``results`` is in completion order."""

    total: int
    completed: int = 0
    succeeded: int = 0
    duplicates: int = 0
    failed: int = 0
    results: List[VideoInfo] = field(default_factory=list)
    errors: List[BatchError] = field(default_factory=list)


class BatchCoordinator:
    """Resolves many URLs with at most ``max_concurrent`` in flight.

    Resolutions start in submission order; a result whose canonical identity
    is already in the collection is counted as a duplicate and dropped.
    """

    def __init__(self, chain: Resolves, config: Optional[BatchConfig] = None) -> None:
        self.chain = chain
        self.config = config or BatchConfig()

    async def run(
        self,
        urls: List[str],
        options: Optional[ResolveOptions] = None,
        on_progress: Optional[BatchProgressCallback] = None,
    ) -> BatchSummary:
        """Resolve every URL and aggregate counts.

        Args:
            urls: Raw URLs; blank entries are skipped
            options: Hints forwarded to every resolution
            on_progress: Called with (completed, total) after each completion

        Returns:
            BatchSummary with unique results and per-URL errors

        Raises:
            ValueError: If more URLs are submitted than the configured maximum
        """
        targets = [u.strip() for u in urls if u and u.strip()]
        if len(targets) > self.config.max_urls:
            raise ValueError(f"At most {self.config.max_urls} URLs per batch")

        summary = BatchSummary(total=len(targets))
        semaphore = asyncio.Semaphore(self.config.max_concurrent)
        lock = asyncio.Lock()
        seen: Set[Tuple[str, str]] = set()

        logger.info("batch_started", total=summary.total, max_concurrent=self.config.max_concurrent)

        async def worker(url: str) -> None:
            async with semaphore:
                try:
                    result = await self.chain.resolve(url, options)
                except Exception as e:
                    logger.warning("batch_item_crashed", url=url, error=str(e), exc_info=True)
                    result = ResolveResult.failure(str(e) or type(e).__name__)

            async with lock:
                summary.completed += 1
                if result.success and result.data is not None:
                    identity = result.data.identity
                    if identity in seen:
                        summary.duplicates += 1
                        outcome = "duplicate"
                        logger.debug("batch_duplicate", url=url, identity=identity)
                    else:
                        seen.add(identity)
                        summary.results.append(result.data)
                        summary.succeeded += 1
                        outcome = "success"
                else:
                    summary.failed += 1
                    summary.errors.append(BatchError(url=url, error=result.error or "Resolution failed"))
                    outcome = "failure"
                MetricsCollector.record_batch_result(outcome)
                if on_progress is not None:
                    on_progress(summary.completed, summary.total)

        await asyncio.gather(*(worker(url) for url in targets))

        logger.info(
            "batch_finished",
            total=summary.total,
            succeeded=summary.succeeded,
            duplicates=summary.duplicates,
            failed=summary.failed,
        )
        return summary
