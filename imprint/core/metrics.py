"""
Prometheus Metrics for Observability

Tracks pipeline performance, upload outcomes and storage calls.
Exposes /metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "pipeline_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Total Pipeline Duration
pipeline_total_duration = Histogram(
    "pipeline_total_duration_seconds",
    "Total time for complete pipeline execution",
    labelnames=["status"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Uploads Counter
uploads_total = Counter(
    "imprint_uploads_total",
    "Total number of uploads by terminal status",
    labelnames=["status", "failure_stage"]
)

# Active Uploads
active_uploads_gauge = Gauge(
    "imprint_active_uploads",
    "Number of uploads currently in the processing state"
)

# Cosmetic stages that degraded instead of failing
decoration_warnings_total = Counter(
    "imprint_decoration_warnings_total",
    "Frame/watermark stages skipped because rendering failed",
    labelnames=["stage"]
)

# Storage collaborator calls
storage_operations_total = Counter(
    "imprint_storage_operations_total",
    "Calls made to the storage backend",
    labelnames=["backend", "operation", "status"]
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
    "imprint_app",
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
        with track_stage_latency("geometry"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_upload_started():
    """An upload entered the processing state."""
    active_uploads_gauge.inc()


def record_upload_finished(status: str, failure_stage: str = "none", was_processing: bool = True):
    """Record an upload reaching a terminal state."""
    uploads_total.labels(status=status, failure_stage=failure_stage).inc()
    if was_processing:
        active_uploads_gauge.dec()


def record_decoration_warning(stage: str):
    """Record a frame/watermark stage that degraded."""
    decoration_warnings_total.labels(stage=stage).inc()


def record_storage_operation(backend: str, operation: str, status: str):
    """Record a storage backend call."""
    storage_operations_total.labels(
        backend=backend,
        operation=operation,
        status=status
    ).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
