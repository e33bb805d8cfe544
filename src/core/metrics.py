"""
Prometheus Metrics for Observability

Tracks intake volume, worker outcomes and per-stage latency.
Exposes /metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Stage latency (storage_download, rembg, storage_upload, ...)
pipeline_latency_seconds = Histogram(
    "pipeline_latency_seconds",
    "Time spent in each processing stage",
    labelnames=["stage", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Intake
uploads_total = Counter(
    "companion_uploads_total",
    "Total number of accepted or rejected uploads",
    labelnames=["status"]
)

# Worker outcomes
jobs_total = Counter(
    "companion_jobs_total",
    "Total number of jobs that reached a terminal status",
    labelnames=["status"]
)

drain_batch_size = Histogram(
    "companion_drain_batch_size",
    "Number of jobs attempted per drain",
    buckets=[0, 1, 2, 3, 5, 10, 25, 50]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "companion_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("rembg"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except BaseException:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_upload(status: str):
    """Record an intake outcome (pending, processed, rejected)."""
    uploads_total.labels(status=status).inc()


def record_job_completion(status: str):
    """Record a terminal job transition."""
    jobs_total.labels(status=status).inc()


def record_drain(batch_size: int):
    """Record how many jobs a drain attempted."""
    drain_batch_size.observe(batch_size)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
