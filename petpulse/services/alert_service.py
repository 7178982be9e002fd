"""Human-facing alert operations: list critical alerts, acknowledge, resolve.

These run inside the request's session (``get_session`` commits on success),
so they only mutate and flush.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from petpulse import metrics
from petpulse.models import Alert, SeverityLevel, utcnow
from petpulse.utils.logging import get_logger

log = get_logger(__name__)

OUTCOME_ACKNOWLEDGED = "Acknowledged by user"
OUTCOME_RESOLVED = "Resolved"


async def list_critical_alerts(db: AsyncSession, limit: int = 100) -> list[Alert]:
    """Critical alerts, newest first."""
    result = await db.execute(
        select(Alert)
        .where(Alert.severity_level == SeverityLevel.CRITICAL)
        .order_by(Alert.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def acknowledge_alert(
    db: AsyncSession,
    alert_id: uuid.UUID,
    response: str | None,
    now: datetime | None = None,
) -> Alert | None:
    """Record the owner's acknowledgement. Returns None if the alert does not exist."""
    alert = await db.get(Alert, alert_id)
    if alert is None:
        return None

    now = now or utcnow()
    alert.user_acknowledged_at = now
    alert.user_response = response
    alert.outcome = OUTCOME_ACKNOWLEDGED

    if alert.user_notified_at is not None:
        notified_at = alert.user_notified_at
        if notified_at.tzinfo is None:
            notified_at = notified_at.replace(tzinfo=timezone.utc)
        latency = (now - notified_at).total_seconds()
        metrics.alert_acknowledgment_duration_seconds.observe(max(latency, 0.0))

    await db.flush()
    log.info("alert_acknowledged", alert_id=str(alert_id))
    return alert


async def resolve_alert(db: AsyncSession, alert_id: uuid.UUID) -> Alert | None:
    """Mark an alert resolved. Returns None if the alert does not exist."""
    alert = await db.get(Alert, alert_id)
    if alert is None:
        return None

    alert.outcome = OUTCOME_RESOLVED
    await db.flush()
    log.info("alert_resolved", alert_id=str(alert_id))
    return alert
