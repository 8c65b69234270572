"""Prometheus metrics collection.

Tracks request rates, resolver-chain attempts, download routes, size-probe
outcomes and batch results.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

app_info = Info("mediagrab", "mediagrab application information")

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

resolver_attempts_total = Counter(
    "resolver_attempts_total",
    "Resolver chain step attempts by resolver and outcome",
    ["resolver", "outcome"],
)

resolver_duration_seconds = Histogram(
    "resolver_duration_seconds",
    "Duration of a single resolver step in seconds",
    ["resolver"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 60.0],
)

downloads_total = Counter(
    "downloads_total",
    "Download operations by route and outcome",
    ["route", "outcome"],
)

download_bytes_total = Counter(
    "download_bytes_total",
    "Bytes streamed to clients by route",
    ["route"],
)

active_downloads = Gauge(
    "active_downloads",
    "Number of downloads currently streaming",
)

size_probes_total = Counter(
    "size_probes_total",
    "Format size probes by method and outcome",
    ["method", "outcome"],
)

batch_results_total = Counter(
    "batch_results_total",
    "Batch resolution results by outcome",
    ["outcome"],
)

errors_total = Counter(
    "errors_total",
    "Total errors by error code and endpoint",
    ["error_code", "endpoint"],
)


class MetricsCollector:
    """Static helpers for recording metrics consistently across the app."""

    @staticmethod
    def record_request(method: str, endpoint: str, status: int, duration: float) -> None:
        """Record HTTP request metrics.

        Args:
            method: HTTP method (GET, POST, etc.).
            endpoint: Normalized endpoint path.
            status: HTTP response status code.
            duration: Request duration in seconds.
        """
        http_requests_total.labels(method=method, endpoint=endpoint, status=str(status)).inc()
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def record_resolver_attempt(resolver: str, outcome: str, duration: float) -> None:
        """Record one resolver chain step.

        Args:
            resolver: Resolver name (e.g. 'youtube', 'generic').
            outcome: 'success', 'failure' or 'exception'.
            duration: Step duration in seconds.
        """
        resolver_attempts_total.labels(resolver=resolver, outcome=outcome).inc()
        resolver_duration_seconds.labels(resolver=resolver).observe(duration)

    @staticmethod
    def record_download(route: str, outcome: str, size: int = 0) -> None:
        """Record a finished download.

        Args:
            route: 'direct' or 'remote'.
            outcome: 'success', 'failed', 'timeout', 'cancelled', 'too_large'.
            size: Bytes streamed to the client.
        """
        downloads_total.labels(route=route, outcome=outcome).inc()
        if size > 0:
            download_bytes_total.labels(route=route).inc(size)

    @staticmethod
    def download_started() -> None:
        active_downloads.inc()

    @staticmethod
    def download_finished() -> None:
        active_downloads.dec()

    @staticmethod
    def record_size_probe(method: str, outcome: str) -> None:
        size_probes_total.labels(method=method, outcome=outcome).inc()

    @staticmethod
    def record_batch_result(outcome: str) -> None:
        batch_results_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_error(error_code: str, endpoint: str) -> None:
        errors_total.labels(error_code=error_code, endpoint=endpoint).inc()


def initialize_metrics(version: str) -> None:
    """Initialize application metrics with version information.

    Args:
        version: Application version string.
    """
    app_info.info({"version": version})
