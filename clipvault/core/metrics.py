"""Prometheus metrics for the download pipeline.

Covers HTTP traffic, flow outcomes, cache effectiveness, admission queue
occupancy and session housekeeping.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("clipvault", "clipvault application information")

# HTTP request metrics
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

# Flow metrics
flows_total = Counter(
    "flows_total",
    "Finished selection flows by terminal state",
    ["state"],
)

fetch_duration_seconds = Histogram(
    "fetch_duration_seconds",
    "Media fetch duration in seconds",
    ["kind"],
    buckets=[10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0],
)

artifact_size_bytes = Histogram(
    "artifact_size_bytes",
    "Fetched artifact size in bytes",
    ["kind"],
    buckets=[1e6, 10e6, 50e6, 100e6, 250e6, 500e6, 1e9, 2e9],
)

# Cache metrics
cache_lookups_total = Counter(
    "cache_lookups_total",
    "Result cache lookups by result",
    ["result"],  # hit, miss, stale
)

# Queue metrics
admission_queue_waiting = Gauge(
    "admission_queue_waiting",
    "Tasks waiting for an execution slot",
)

admission_queue_active = Gauge(
    "admission_queue_active",
    "Tasks currently holding an execution slot",
)

queue_rejections_total = Counter(
    "queue_rejections_total",
    "Tasks rejected because the wait list was full",
)

# Session metrics
sessions_swept_total = Counter(
    "sessions_swept_total",
    "Expired sessions removed by the sweeper",
)

# Error metrics
errors_total = Counter(
    "errors_total",
    "Total errors by error code and endpoint",
    ["error_code", "endpoint"],
)


class MetricsCollector:
    """Centralized metrics collection and update helper.

    Provides static methods for recording metrics throughout the
    application in a consistent manner.
    """

    @staticmethod
    def record_request(
        method: str,
        endpoint: str,
        status: int,
        duration: float,
    ) -> None:
        """Record HTTP request metrics.

        Args:
            method: HTTP method (GET, POST, etc.).
            endpoint: Normalized endpoint path.
            status: HTTP response status code.
            duration: Request duration in seconds.
        """
        http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status=str(status),
        ).inc()
        http_request_duration_seconds.labels(
            method=method,
            endpoint=endpoint,
        ).observe(duration)

    @staticmethod
    def record_flow(state: str) -> None:
        """Record a flow reaching a terminal state."""
        flows_total.labels(state=state).inc()

    @staticmethod
    def record_fetch(kind: str, duration: float, size: int) -> None:
        """Record a completed fetch.

        Args:
            kind: Artifact kind ('video' or 'audio').
            duration: Fetch duration in seconds.
            size: Artifact size in bytes.
        """
        fetch_duration_seconds.labels(kind=kind).observe(duration)
        if size > 0:
            artifact_size_bytes.labels(kind=kind).observe(size)

    @staticmethod
    def record_cache_lookup(result: str) -> None:
        """Record a cache lookup result ('hit', 'miss' or 'stale')."""
        cache_lookups_total.labels(result=result).inc()

    @staticmethod
    def update_queue_metrics(queued: int, active: int) -> None:
        """Update admission queue gauges.

        Args:
            queued: Tasks waiting for a slot.
            active: Tasks running.
        """
        admission_queue_waiting.set(queued)
        admission_queue_active.set(active)

    @staticmethod
    def record_queue_rejection() -> None:
        queue_rejections_total.inc()

    @staticmethod
    def record_sessions_swept(count: int) -> None:
        if count > 0:
            sessions_swept_total.inc(count)

    @staticmethod
    def record_error(error_code: str, endpoint: str) -> None:
        """Record an error occurrence.

        Args:
            error_code: Error code from ErrorCode class.
            endpoint: Endpoint where the error occurred.
        """
        errors_total.labels(error_code=error_code, endpoint=endpoint).inc()


def initialize_metrics(version: str) -> None:
    """Initialize application metrics with version information.

    Args:
        version: Application version string.
    """
    app_info.info({"version": version})
