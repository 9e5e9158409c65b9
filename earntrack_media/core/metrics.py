"""Prometheus metrics for the API and the transcoding workers."""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Celery prefork and gunicorn workers share metrics through a directory
if "PROMETHEUS_MULTIPROC_DIR" in os.environ or "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "earntrack_media_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 60.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Pipeline Metrics
# ============================================
MEDIA_UPLOADS_TOTAL = Counter(
    "media_uploads_total",
    "Video uploads by result",
    ["result"],
    registry=REGISTRY,
)

TRANSCODE_JOBS_TOTAL = Counter(
    "transcode_jobs_total",
    "Settled transcode jobs by format, resolution and status",
    ["format", "resolution", "status"],
    registry=REGISTRY,
)

TRANSCODE_DURATION_SECONDS = Histogram(
    "transcode_duration_seconds",
    "Wall time of one transcode job",
    ["format"],
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0],
    registry=REGISTRY,
)

VIDEO_STATUS_TRANSITIONS_TOTAL = Counter(
    "video_status_transitions_total",
    "Video status changes by target status",
    ["status"],
    registry=REGISTRY,
)

STORAGE_ERRORS_TOTAL = Counter(
    "storage_errors_total",
    "Failed object store operations",
    ["operation"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
