"""Prometheus metrics for the video platform.

Tracks HTTP traffic, the ingestion pipeline, encoding jobs, webhook
deliveries, state transitions, moderation decisions and feed requests.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)
import os

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "short_video_app",
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
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Ingestion Pipeline Metrics
# ============================================
VIDEO_UPLOADS_TOTAL = Counter(
    "video_uploads_total",
    "Total video uploads by outcome",
    ["outcome"],
    registry=REGISTRY,
)

VIDEO_PIPELINE_STAGE_SECONDS = Histogram(
    "video_pipeline_stage_seconds",
    "Duration of ingestion pipeline stages in seconds",
    ["stage"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)


# ============================================
# Encoding Metrics
# ============================================
ENCODING_JOBS_SUBMITTED_TOTAL = Counter(
    "encoding_jobs_submitted_total",
    "Encoding jobs submitted to a backend",
    ["backend", "phase", "outcome"],
    registry=REGISTRY,
)

ENCODING_WEBHOOK_EVENTS_TOTAL = Counter(
    "encoding_webhook_events_total",
    "Encoding events received from backends",
    ["receiver", "event", "outcome"],
    registry=REGISTRY,
)

VIDEO_STATE_TRANSITIONS_TOTAL = Counter(
    "video_state_transitions_total",
    "Video state transitions by outcome (applied, noop, invalid)",
    ["transition", "outcome"],
    registry=REGISTRY,
)


# ============================================
# Moderation Metrics
# ============================================
MODERATION_DECISIONS_TOTAL = Counter(
    "moderation_decisions_total",
    "Moderation decisions by check and resulting status",
    ["check", "status"],
    registry=REGISTRY,
)


# ============================================
# Feed Metrics
# ============================================
FEED_REQUESTS_TOTAL = Counter(
    "feed_requests_total",
    "Feed requests by mode",
    ["mode"],
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
