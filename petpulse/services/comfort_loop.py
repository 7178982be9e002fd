"""ComfortLoop: the alert escalation and intervention engine.

Each alert event moves through a fixed sequence of Alert row mutations:

    Received → Persisted → Scored → Intervened →
        critical: Notified → Awaiting acknowledgement
        otherwise: Monitoring → Resolved / Persists / Indeterminate

Algorithm (per AlertPayload):
    1. Resolve severity_level (payload, then its context, else low)
    2. Count same pet + same type alerts inside the escalation window, +1 for
       this one. Within a window the count never decreases, so neither does
       the escalation level
    3. Force severity high from the 5th alert on, unless already critical
    4. Persist the Alert with the full raw payload
    5. Decide and execute the intervention (see services.intervention)
    6. Critical: notify the owner on email + SMS, generate quick actions, stop
    7. High: generate quick actions, then monitor
    8. Monitor: wait, then compare the pet's latest processed clip

Admission control lives in ``AlertIntake``: the HTTP layer submits and returns
immediately, and at most ALERT_MAX_CONCURRENCY alerts are processed at once.
Further alerts wait for a free slot.

Dependencies (constructor-injected):
    - session_factory: Alert/Pet/User/PetVideo store
    - dispatcher: NotificationDispatcher (fire-and-forget sends)
    - quick_actions: QuickActionGenerator
    - clock: current-time callable, so tests can pin the escalation window
"""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from petpulse import metrics
from petpulse.config import (
    get_alert_monitoring_delay,
    get_dashboard_url,
    get_escalation_window_minutes,
    get_owner_email_fallback,
    get_owner_phone_fallback,
)
from petpulse.models import Alert, Pet, PetVideo, SeverityLevel, User, VideoStatus, utcnow
from petpulse.notifications.dispatcher import (
    AlertDetails,
    Notification,
    NotificationDispatcher,
    OwnerContact,
)
from petpulse.schemas.alert import AlertPayload
from petpulse.services.intervention import (
    Intervention,
    NotificationLevel,
    decide_intervention,
    escalate_severity,
    final_autonomous_action,
)
from petpulse.services.quick_actions import QuickActionGenerator
from petpulse.utils.logging import StructuredLogger, get_logger

log = get_logger(__name__)

OUTCOME_RESOLVED = "Resolved: pet behavior returned to normal."
OUTCOME_PERSISTS = "Persists: unusual behavior continues; further alerts may escalate."
OUTCOME_INDETERMINATE = "Indeterminate: no processed clip available for a resolution check."
OUTCOME_AWAITING_ACK = "awaiting acknowledgement"
CRITICAL_NOTIFICATION_SENT = "critical-notification-sent"

FALLBACK_OWNER_NAME = "Pet Owner"
FALLBACK_PET_NAME = "Your Pet"
DEFAULT_CRITICAL_DESCRIPTION = "Critical health indicator detected"
DEFAULT_DESCRIPTION = "Alert triggered"


@dataclass
class AlertOutcome:
    """What the engine did with one alert (returned for callers and tests)."""

    alert_id: uuid.UUID
    count: int
    severity_level: SeverityLevel
    intervention: Intervention
    side_action: Intervention | None = None
    # Channels that accepted a send; delivery is recorded on the Alert row
    notification_channels: list[str] = field(default_factory=list)
    quick_actions: list[uuid.UUID] = field(default_factory=list)
    outcome: str | None = None


class ComfortLoop:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        quick_actions: QuickActionGenerator,
        clock: Callable[[], datetime] = utcnow,
        monitoring_delay: float | None = None,
        escalation_window: timedelta | None = None,
        dashboard_url: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.quick_actions = quick_actions
        self.clock = clock
        self.monitoring_delay = (
            monitoring_delay if monitoring_delay is not None else get_alert_monitoring_delay()
        )
        self.escalation_window = escalation_window or timedelta(
            minutes=get_escalation_window_minutes()
        )
        self.dashboard_url = (dashboard_url or get_dashboard_url()).rstrip("/")
        self._delivery_lock = asyncio.Lock()

    async def process_alert(self, payload: AlertPayload) -> AlertOutcome:
        """Run one alert through scoring, intervention and follow-up.

        Raises:
            SQLAlchemyError: If the Alert row cannot be persisted. Failures
                after persistence (notifications, quick actions, outcome
                updates) are logged and do not raise.
        """
        alert_log = log.bind(
            pet_id=payload.pet_id,
            alert_type=payload.alert_type.value,
            source_alert_id=payload.alert_id,
        )
        received_at = self.clock()

        # Steps 1-3: score
        count = await self._recent_alert_count(payload, received_at, alert_log) + 1
        reported = payload.resolved_severity_level
        severity_level = escalate_severity(reported, count)
        if severity_level is not reported:
            alert_log.info("alert_severity_escalated", count=count, severity_level="high")

        # Step 4: persist
        alert = Alert(
            id=uuid.uuid4(),
            pet_id=payload.pet_id,
            alert_type=payload.alert_type.value,
            severity=(
                severity_level.value
                if severity_level in (SeverityLevel.CRITICAL, SeverityLevel.HIGH)
                else payload.severity
            ),
            severity_level=severity_level,
            message=payload.message,
            payload=payload.raw_payload(),
            critical_indicators=payload.indicators,
            recommended_actions=payload.actions,
            created_at=received_at,
        )
        async with self.session_factory() as db, db.begin():
            db.add(alert)
        alert_id = alert.id
        alert_log = alert_log.bind(alert_id=str(alert_id))
        metrics.alerts_processed_total.labels(severity_level=severity_level.value).inc()
        alert_log.info("alert_persisted", count=count, severity_level=severity_level.value)

        # Steps 5-7: intervene
        intervention = decide_intervention(payload.alert_type, count, severity_level)
        side_action = final_autonomous_action(count, severity_level)
        result = AlertOutcome(
            alert_id=alert_id,
            count=count,
            severity_level=severity_level,
            intervention=intervention,
            side_action=side_action,
        )

        if side_action is not None:
            alert_log.info("final_autonomous_action", action=side_action.label)
            await self._execute(side_action, payload, alert_id, alert_log)
        result.notification_channels = await self._execute(
            intervention, payload, alert_id, alert_log
        )
        await self._record_intervention(alert_id, intervention)

        # Step 8: critical branch, no monitoring
        if severity_level is SeverityLevel.CRITICAL:
            result.notification_channels = await self._handle_critical(payload, alert, alert_log)
            result.quick_actions = await self._generate_quick_actions(
                alert_id, payload.pet_id, severity_level, alert_log
            )
            result.outcome = OUTCOME_AWAITING_ACK
            return result

        # Step 9: high severity outreach
        if severity_level is SeverityLevel.HIGH:
            result.quick_actions = await self._generate_quick_actions(
                alert_id, payload.pet_id, severity_level, alert_log
            )

        # Step 10: monitoring
        result.outcome = await self._monitor(alert_id, payload.pet_id, alert_log)
        return result

    async def _recent_alert_count(
        self, payload: AlertPayload, now: datetime, alert_log: StructuredLogger
    ) -> int:
        since = now - self.escalation_window
        try:
            async with self.session_factory() as db:
                count = await db.scalar(
                    select(func.count(Alert.id)).where(
                        Alert.pet_id == payload.pet_id,
                        Alert.alert_type == payload.alert_type.value,
                        Alert.created_at >= since,
                    )
                )
        except SQLAlchemyError as e:
            # Treated as the first alert in the window
            alert_log.error("alert_count_failed", error=str(e))
            return 0
        return count or 0

    async def _execute(
        self,
        intervention: Intervention,
        payload: AlertPayload,
        alert_id: uuid.UUID,
        alert_log: StructuredLogger,
    ) -> list[str]:
        """Carry out an intervention. Returns notification channels used, if any.

        Device actuation (lights, speakers, treat dispenser) is a logged domain
        event only. Critical notifications are sent by the critical branch.
        """
        alert_log.info("intervention_executed", action=intervention.label)
        if intervention.level is not NotificationLevel.STANDARD:
            return []

        owner = await self._resolve_owner(payload.pet_id, alert_log)
        details = AlertDetails(
            alert_id=str(alert_id),
            severity="HIGH",
            description=payload.description or DEFAULT_DESCRIPTION,
            video_link=self._video_link(payload.video_id),
            started_at=self.clock(),
        )
        return await self.dispatcher.notify_alert(owner, details, self._record_delivery)

    async def _record_intervention(self, alert_id: uuid.UUID, intervention: Intervention) -> None:
        now = self.clock()
        async with self.session_factory() as db, db.begin():
            alert = await db.get(Alert, alert_id)
            if alert is None:
                return
            alert.intervention_action = intervention.label
            alert.intervention_time = now

    async def _record_delivery(self, notification: Notification) -> None:
        """Mark the alert notified once a channel has actually delivered.

        Channels are appended one at a time as sends complete, so an alert
        whose sends all failed keeps ``notification_sent=False``.
        """
        if notification.alert_id is None:
            return
        alert_id = uuid.UUID(notification.alert_id)
        async with self._delivery_lock:
            try:
                async with self.session_factory() as db, db.begin():
                    alert = await db.get(Alert, alert_id)
                    if alert is None:
                        return
                    channels = list(alert.notification_channels or [])
                    if notification.channel not in channels:
                        channels.append(notification.channel)
                    alert.notification_channels = channels
                    alert.notification_sent = True
                    if alert.user_notified_at is None:
                        alert.user_notified_at = self.clock()
            except SQLAlchemyError as e:
                log.error(
                    "notification_delivery_record_failed",
                    alert_id=notification.alert_id,
                    channel=notification.channel,
                    error=str(e),
                )

    async def _handle_critical(
        self, payload: AlertPayload, alert: Alert, alert_log: StructuredLogger
    ) -> list[str]:
        alert_log.warning("critical_alert_handling")
        owner = await self._resolve_owner(payload.pet_id, alert_log)
        details = AlertDetails(
            alert_id=str(alert.id),
            severity="CRITICAL",
            description=payload.message or DEFAULT_CRITICAL_DESCRIPTION,
            video_link=self._video_link(payload.video_id),
            critical_indicators=alert.critical_indicators,
            recommended_actions=alert.recommended_actions,
            started_at=self.clock(),
        )
        channels = await self.dispatcher.notify_alert(owner, details, self._record_delivery)

        async with self.session_factory() as db, db.begin():
            stored = await db.get(Alert, alert.id)
            if stored is not None:
                stored.intervention_action = CRITICAL_NOTIFICATION_SENT
                stored.outcome = OUTCOME_AWAITING_ACK

        alert_log.info("critical_alert_notified", channels=channels)
        return channels

    async def _generate_quick_actions(
        self,
        alert_id: uuid.UUID,
        pet_id: int,
        severity_level: SeverityLevel,
        alert_log: StructuredLogger,
    ) -> list[uuid.UUID]:
        try:
            return await self.quick_actions.generate(alert_id, pet_id, severity_level.value)
        except SQLAlchemyError as e:
            alert_log.error("quick_actions_failed", exc_info=True, error=str(e))
            return []

    async def _monitor(
        self, alert_id: uuid.UUID, pet_id: int, alert_log: StructuredLogger
    ) -> str:
        alert_log.info("alert_monitoring", delay_seconds=self.monitoring_delay)
        await asyncio.sleep(self.monitoring_delay)

        async with self.session_factory() as db, db.begin():
            latest = (
                await db.execute(
                    select(PetVideo)
                    .where(PetVideo.pet_id == pet_id, PetVideo.status == VideoStatus.PROCESSED)
                    .order_by(PetVideo.created_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()

            if latest is None:
                outcome = OUTCOME_INDETERMINATE
            elif latest.is_unusual:
                outcome = OUTCOME_PERSISTS
            else:
                outcome = OUTCOME_RESOLVED

            alert = await db.get(Alert, alert_id)
            if alert is not None:
                alert.outcome = outcome

        alert_log.info("alert_outcome_recorded", outcome=outcome)
        return outcome

    async def _resolve_owner(self, pet_id: int, alert_log: StructuredLogger) -> OwnerContact:
        fallback_phone = get_owner_phone_fallback()
        try:
            async with self.session_factory() as db:
                row = (
                    await db.execute(
                        select(Pet.name, User.name, User.email, User.phone)
                        .join(User, Pet.user_id == User.id)
                        .where(Pet.id == pet_id)
                    )
                ).first()
        except SQLAlchemyError as e:
            alert_log.error("owner_lookup_failed", error=str(e))
            row = None

        if row is None:
            alert_log.warning("owner_lookup_fallback")
            return OwnerContact(
                email=get_owner_email_fallback(),
                phone=fallback_phone,
                name=FALLBACK_OWNER_NAME,
                pet_name=FALLBACK_PET_NAME,
            )

        pet_name, owner_name, email, phone = row
        return OwnerContact(
            email=email,
            phone=phone or fallback_phone,
            name=owner_name,
            pet_name=pet_name,
        )

    def _video_link(self, video_id: str | None) -> str:
        if video_id:
            return f"{self.dashboard_url}/videos/{video_id}"
        return self.dashboard_url


class AlertIntake:
    """Admission control in front of ComfortLoop.

    ``submit`` schedules processing and returns at once; a semaphore bounds how
    many alerts run concurrently. Background tasks are tracked until done.
    """

    def __init__(self, loop: ComfortLoop, max_concurrency: int) -> None:
        self.loop = loop
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, payload: AlertPayload) -> None:
        task = asyncio.create_task(self._run(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for all submitted alerts to finish (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, payload: AlertPayload) -> None:
        async with self._semaphore:
            try:
                await self.loop.process_alert(payload)
            except Exception as e:
                log.error(
                    "alert_processing_failed",
                    exc_info=True,
                    pet_id=payload.pet_id,
                    source_alert_id=payload.alert_id,
                    error=str(e),
                )
