"""Configuration management for the processing pipeline and escalation engine.

This module provides centralized configuration loading from environment variables.
Required values are cached with lru_cache; optional values are read on each call
so tests can override them with monkeypatch.

Environment Variables:
    DATABASE_URL: PostgreSQL connection URL (required)
    GEMINI_API_KEY: Analysis service API key (required by the analysis client)
    AGENT_SERVICE_URL: Base URL of the escalation engine (default: http://agent:3002)
    VIDEO_WORKER_CONCURRENCY / DIGEST_WORKER_CONCURRENCY: Worker pool sizes

Usage:
    from petpulse.config import get_database_url, get_video_worker_concurrency

    db_url = get_database_url()  # Raises if DATABASE_URL not set
    workers = get_video_worker_concurrency()  # 3 unless overridden
"""

import os
import tempfile
from functools import lru_cache

import structlog

log = structlog.get_logger(__name__)


def _get_int(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read an integer setting, clamped to [minimum, maximum].

    Invalid values log a warning and fall back to the default.
    """
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        log.warning("invalid_int_setting", name=name, value=os.getenv(name), using_default=default)
        return default
    return max(minimum, min(maximum, value))


@lru_cache
def get_database_url() -> str:
    """Get database URL from environment.

    Converts postgresql:// to postgresql+asyncpg:// for async SQLAlchemy.

    Returns:
        Database URL with asyncpg driver.

    Raises:
        ValueError: If DATABASE_URL not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def get_queue_dsn() -> str:
    """Get the raw asyncpg DSN used by the PgQueuer pool.

    asyncpg does not understand the ``+asyncpg`` driver suffix, so it is
    stripped if present.

    Raises:
        ValueError: If DATABASE_URL not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable not set")
    return url.replace("postgresql+asyncpg://", "postgresql://", 1)


# Worker pool defaults
DEFAULT_VIDEO_WORKER_CONCURRENCY = 3
DEFAULT_DIGEST_WORKER_CONCURRENCY = 3
DEFAULT_ALERT_MAX_CONCURRENCY = 2


def get_video_worker_concurrency() -> int:
    """Number of video jobs processed in parallel per worker process.

    Environment Variable:
        VIDEO_WORKER_CONCURRENCY: Pool size (default: 3, range 1-32)
    """
    return _get_int("VIDEO_WORKER_CONCURRENCY", DEFAULT_VIDEO_WORKER_CONCURRENCY, 1, 32)


def get_digest_worker_concurrency() -> int:
    """Number of digest jobs processed in parallel per worker process.

    Environment Variable:
        DIGEST_WORKER_CONCURRENCY: Pool size (default: 3, range 1-32)
    """
    return _get_int("DIGEST_WORKER_CONCURRENCY", DEFAULT_DIGEST_WORKER_CONCURRENCY, 1, 32)


def get_alert_max_concurrency() -> int:
    """Maximum number of alert events processed concurrently by the engine.

    Bounds load on the notification and text-generation services. Alerts
    beyond the limit wait for a free slot.

    Environment Variable:
        ALERT_MAX_CONCURRENCY: Admission semaphore size (default: 2)
    """
    return _get_int("ALERT_MAX_CONCURRENCY", DEFAULT_ALERT_MAX_CONCURRENCY, 1, 16)


def get_alert_monitoring_delay() -> float:
    """Seconds the engine waits before the post-intervention resolution check.

    Environment Variable:
        ALERT_MONITORING_DELAY_SECONDS: Delay (default: 30)
    """
    return float(_get_int("ALERT_MONITORING_DELAY_SECONDS", 30, 0, 3600))


def get_escalation_window_minutes() -> int:
    """Length of the trailing window used to count same-type alerts.

    Environment Variable:
        ALERT_ESCALATION_WINDOW_MINUTES: Window length (default: 60)
    """
    return _get_int("ALERT_ESCALATION_WINDOW_MINUTES", 60, 1, 24 * 60)


# Download and generate time on top of the analysis poll ceiling
PROCESSING_DEADLINE_MARGIN_SECONDS = 300


def get_processing_deadline_seconds() -> int:
    """Age after which a PROCESSING job is considered stuck.

    Never shorter than the analysis poll ceiling
    (ANALYSIS_MAX_POLLS x ANALYSIS_POLL_INTERVAL_SECONDS) plus
    PROCESSING_DEADLINE_MARGIN_SECONDS, so a job still being analyzed is not
    reaped.

    Environment Variable:
        PROCESSING_DEADLINE_SECONDS: Deadline (default: 900, minimum 60)
    """
    configured = _get_int("PROCESSING_DEADLINE_SECONDS", 900, 60, 24 * 3600)
    floor = int(get_analysis_poll_interval() * get_analysis_max_polls())
    floor += PROCESSING_DEADLINE_MARGIN_SECONDS
    if configured < floor:
        log.warning(
            "processing_deadline_raised",
            configured=configured,
            deadline=floor,
        )
        return floor
    return configured


def get_reaper_interval_seconds() -> int:
    """Polling interval of the stuck-job reaper (default: 60)."""
    return _get_int("REAPER_INTERVAL_SECONDS", 60, 5, 3600)


def get_queue_monitor_interval_seconds() -> int:
    """Polling interval of the queue depth monitor (default: 15)."""
    return _get_int("QUEUE_MONITOR_INTERVAL_SECONDS", 15, 1, 3600)


def get_scratch_dir() -> str:
    """Directory for downloaded clips awaiting analysis.

    Environment Variable:
        SCRATCH_DIR: Scratch path (default: system temp dir)
    """
    return os.getenv("SCRATCH_DIR", tempfile.gettempdir())


def get_storage_endpoint_url() -> str | None:
    """Custom S3-compatible endpoint (e.g. https://storage.googleapis.com).

    Returns None to use the default AWS endpoint.
    """
    return os.getenv("STORAGE_ENDPOINT_URL") or None


def get_storage_region() -> str | None:
    """Object storage region, or None for the client default."""
    return os.getenv("STORAGE_REGION") or None


@lru_cache
def get_gemini_api_key() -> str:
    """Get analysis service API key from environment.

    Raises:
        ValueError: If GEMINI_API_KEY not set.
    """
    key = os.getenv("GEMINI_API_KEY")
    if not key:
        raise ValueError("GEMINI_API_KEY environment variable is required")
    return key


def get_gemini_model() -> str:
    """Analysis model name (default: gemini-1.5-pro)."""
    return os.getenv("GEMINI_MODEL", "gemini-1.5-pro")


def get_analysis_poll_interval() -> float:
    """Seconds between file-state polls (default: 5)."""
    return float(_get_int("ANALYSIS_POLL_INTERVAL_SECONDS", 5, 1, 60))


def get_analysis_max_polls() -> int:
    """Maximum file-state polls before the analysis fails (default: 60)."""
    return _get_int("ANALYSIS_MAX_POLLS", 60, 1, 720)


def get_agent_service_url() -> str:
    """Base URL of the escalation engine's alert intake.

    Environment Variable:
        AGENT_SERVICE_URL: Base URL (default: http://agent:3002)
    """
    return os.getenv("AGENT_SERVICE_URL", "http://agent:3002").rstrip("/")


def get_owner_email_fallback() -> str:
    """Owner email used when the pet/owner lookup fails."""
    return os.getenv("OWNER_EMAIL", "test@example.com")


def get_owner_phone_fallback() -> str:
    """Owner phone used for SMS when the owner has no phone on record."""
    return os.getenv("OWNER_PHONE", "+15550000000")


def get_dashboard_url() -> str:
    """Base URL for video deep links in notifications."""
    return os.getenv("DASHBOARD_URL", "https://petpulse.dashboard").rstrip("/")


def get_sendgrid_api_key() -> str | None:
    """SendGrid API key, or None to run the email channel in mock mode."""
    return os.getenv("SENDGRID_API_KEY")


def get_notification_email_from() -> str:
    """Sender address for alert emails."""
    return os.getenv("NOTIFICATION_EMAIL_FROM", "alerts@petpulse.com")


def get_twilio_credentials() -> tuple[str, str] | None:
    """Twilio (account_sid, auth_token), or None to run SMS in mock mode."""
    sid = os.getenv("TWILIO_ACCOUNT_SID")
    token = os.getenv("TWILIO_AUTH_TOKEN")
    if sid and token:
        return sid, token
    return None


def get_twilio_from_number() -> str:
    """Sender number for SMS alerts (empty when not configured)."""
    return os.getenv("TWILIO_SMS_FROM_NUMBER", "")
