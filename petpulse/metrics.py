"""Prometheus metrics for the pipeline and the escalation engine.

All collectors live in a private CollectorRegistry so tests and multiple app
instances never collide with the default global registry. Worker processes and
the engine app both import this module; only the engine exposes ``/metrics``.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

# ============================================================================
# Video pipeline
# ============================================================================

videos_processed_total = Counter(
    "petpulse_video_processed_total",
    "Videos successfully analyzed",
    registry=REGISTRY,
)

video_processing_errors_total = Counter(
    "petpulse_video_processing_errors_total",
    "Video processing errors by pipeline stage",
    ["stage"],
    registry=REGISTRY,
)

video_processing_duration_seconds = Histogram(
    "petpulse_video_processing_duration_seconds",
    "Wall time from dequeue to PROCESSED",
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=REGISTRY,
)

videos_reaped_total = Counter(
    "petpulse_videos_reaped_total",
    "Jobs recovered from PROCESSING past the deadline",
    ["outcome"],
    registry=REGISTRY,
)

gemini_api_errors_total = Counter(
    "petpulse_gemini_api_errors_total",
    "Analysis service call failures",
    registry=REGISTRY,
)

gemini_tokens_total = Counter(
    "petpulse_gemini_tokens_total",
    "Analysis service token usage",
    ["type"],
    registry=REGISTRY,
)

unusual_events_total = Counter(
    "petpulse_unusual_events_total",
    "Clips flagged unusual by analysis",
    registry=REGISTRY,
)

critical_alerts_total = Counter(
    "petpulse_critical_alerts_total",
    "Clips flagged critical by analysis",
    registry=REGISTRY,
)

alert_webhook_failures_total = Counter(
    "petpulse_alert_webhook_failures_total",
    "Alert deliveries to the escalation engine that failed",
    registry=REGISTRY,
)

daily_digests_generated_total = Counter(
    "petpulse_daily_digests_generated_total",
    "Daily digests written (insert or overwrite)",
    registry=REGISTRY,
)

queue_depth = Gauge(
    "petpulse_queue_depth",
    "Jobs waiting in a queue",
    ["queue"],
    registry=REGISTRY,
)

# ============================================================================
# Escalation engine
# ============================================================================

alerts_processed_total = Counter(
    "petpulse_alerts_processed_total",
    "Alerts processed by the escalation engine",
    ["severity_level"],
    registry=REGISTRY,
)

notifications_sent_total = Counter(
    "petpulse_notifications_sent_total",
    "Notifications delivered",
    ["channel"],
    registry=REGISTRY,
)

notifications_failed_total = Counter(
    "petpulse_notifications_failed_total",
    "Notifications that failed to deliver",
    ["channel"],
    registry=REGISTRY,
)

alert_acknowledgment_duration_seconds = Histogram(
    "petpulse_alert_acknowledgment_duration_seconds",
    "Time from user notification to acknowledgement",
    buckets=[30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0, 7200.0],
    registry=REGISTRY,
)


def record_processing_error(stage: str) -> None:
    """Count a video pipeline error (fetch, analysis, uri, requeue, lease_lost, ...)."""
    video_processing_errors_total.labels(stage=stage).inc()


def record_token_usage(prompt_tokens: int, completion_tokens: int) -> None:
    if prompt_tokens:
        gemini_tokens_total.labels(type="prompt").inc(prompt_tokens)
    if completion_tokens:
        gemini_tokens_total.labels(type="completion").inc(completion_tokens)


def get_metrics() -> bytes:
    """Generate Prometheus text format output."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
