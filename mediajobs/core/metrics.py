"""Prometheus metrics collection for the API.

This module defines and manages Prometheus metrics for monitoring
request rates, job outcomes, queue status, storage, and errors.
"""

from prometheus_client import Counter, Gauge, Histogram, Info
from starlette.requests import Request
from starlette.routing import Match

# Application info
app_info = Info("mediajobs", "Media job service application information")

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

# Job metrics
jobs_total = Counter(
    "jobs_total",
    "Total finished jobs by terminal status",
    ["status"],
)

job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Job processing duration in seconds",
    buckets=[5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

artifact_size_bytes = Histogram(
    "artifact_size_bytes",
    "Delivered artifact size in bytes",
    buckets=[1e6, 5e6, 10e6, 25e6, 50e6, 100e6, 250e6],
)

postprocessing_failures_total = Counter(
    "postprocessing_failures_total",
    "Tagging failures that left the artifact untagged",
)

# Queue metrics
job_queue_size = Gauge(
    "job_queue_size",
    "Current number of jobs waiting in the queue",
)

active_jobs = Gauge(
    "active_jobs",
    "Number of jobs currently being processed",
)

# Storage metrics
storage_used_bytes = Gauge(
    "storage_used_bytes",
    "Total storage space used in bytes",
)

storage_available_bytes = Gauge(
    "storage_available_bytes",
    "Available storage space in bytes",
)

artifacts_expired_total = Counter(
    "artifacts_expired_total",
    "Artifacts removed by the expiry sweep",
)

stale_files_removed_total = Counter(
    "stale_files_removed_total",
    "Leftover temporary files and sidecar images removed",
)

# Error metrics
errors_total = Counter(
    "errors_total",
    "Total errors by error code and endpoint",
    ["error_code", "endpoint"],
)


UNMATCHED_ENDPOINT = "/unmatched"


def endpoint_label(request: Request) -> str:
    """Route template for metric labels, so path parameters do not add series.

    Unmatched paths share a fixed label to keep cardinality bounded.
    """
    route = request.scope.get("route")
    if route is None:
        for candidate in request.app.router.routes:
            match, _ = candidate.matches(request.scope)
            if match == Match.FULL:
                route = candidate
                break
    return getattr(route, "path", UNMATCHED_ENDPOINT)


class MetricsCollector:
    """Centralized metrics collection and update helper."""

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
    def record_job(status: str, duration: float, size: int = 0) -> None:
        """Record a job reaching a terminal state.

        Args:
            status: Terminal status ('completed' or 'failed').
            duration: Processing duration in seconds.
            size: Artifact size in bytes, 0 when there is none.
        """
        jobs_total.labels(status=status).inc()
        job_duration_seconds.observe(duration)
        if size > 0:
            artifact_size_bytes.observe(size)

    @staticmethod
    def record_postprocessing_failure() -> None:
        postprocessing_failures_total.inc()

    @staticmethod
    def update_queue_metrics(queue_size: int, active: int) -> None:
        """Update job queue metrics."""
        job_queue_size.set(queue_size)
        active_jobs.set(active)

    @staticmethod
    def update_storage_metrics(used: int, available: int) -> None:
        storage_used_bytes.set(used)
        storage_available_bytes.set(available)

    @staticmethod
    def record_artifacts_expired(count: int) -> None:
        if count > 0:
            artifacts_expired_total.inc(count)

    @staticmethod
    def record_stale_files_removed(count: int) -> None:
        if count > 0:
            stale_files_removed_total.inc(count)

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

    Should be called during application startup.
    """
    app_info.info({"version": version})
