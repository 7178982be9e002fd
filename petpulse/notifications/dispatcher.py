"""Multi-channel notification dispatcher (email via SendGrid, SMS via Twilio).

The escalation engine never talks to a provider directly. It hands a
``Notification`` command to the dispatcher, which spawns the send as a
background task and tracks completion in per-channel sent/failed counters
(also exported as Prometheus metrics). The engine's success path therefore
never depends on delivery.

Channels run in mock mode (log and count as sent) when their credentials are
not configured, so local and test deployments exercise the full flow.

Architecture Pattern:
    - Async HTTP client (httpx) per provider
    - Fire-and-forget: asyncio.create_task + done callback, references kept in
      a set until completion
    - ``background=False`` delivers inline, for deterministic tests

Usage:
    from petpulse.notifications.dispatcher import NotificationDispatcher

    dispatcher = NotificationDispatcher.from_env()
    channels = await dispatcher.notify_alert(owner, alert_details, on_delivered=record)
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx

from petpulse import metrics
from petpulse.config import (
    get_notification_email_from,
    get_sendgrid_api_key,
    get_twilio_credentials,
    get_twilio_from_number,
)
from petpulse.exceptions import NotificationError
from petpulse.notifications import templates
from petpulse.utils.logging import get_logger

log = get_logger(__name__)

EMAIL = "email"
SMS = "sms"

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


@dataclass(frozen=True)
class Notification:
    """One message to one recipient over one channel."""

    channel: str
    recipient: str
    body: str
    subject: str = ""
    alert_id: str | None = None


@dataclass(frozen=True)
class OwnerContact:
    """Resolved notification targets for a pet's owner."""

    email: str
    phone: str
    name: str
    pet_name: str


@dataclass(frozen=True)
class AlertDetails:
    alert_id: str
    severity: str
    description: str
    video_link: str
    critical_indicators: list[str] | None = None
    recommended_actions: list[str] | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# Called after a channel actually delivered a notification
DeliveryCallback = Callable[["Notification"], Awaitable[None]]


class Channel(Protocol):
    name: str

    async def send(self, notification: Notification) -> None: ...


class EmailChannel:
    """SendGrid v3 mail send. Mock mode without an API key."""

    name = EMAIL

    def __init__(
        self,
        api_key: str | None,
        from_email: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self._client = client
        if not api_key:
            log.warning("sendgrid_not_configured", mode="mock")

    async def send(self, notification: Notification) -> None:
        if not self.api_key:
            log.info(
                "mock_email_sent",
                to=notification.recipient,
                subject=notification.subject,
                body_length=len(notification.body),
            )
            return

        payload = {
            "personalizations": [{"to": [{"email": notification.recipient, "name": "Pet Owner"}]}],
            "from": {"email": self.from_email},
            "subject": notification.subject,
            "content": [{"type": "text/html", "value": notification.body}],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        await _post(EMAIL, self._client, SENDGRID_URL, json=payload, headers=headers)


class SmsChannel:
    """Twilio Messages API. Mock mode without credentials."""

    name = SMS

    def __init__(
        self,
        credentials: tuple[str, str] | None,
        from_number: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.credentials = credentials
        self.from_number = from_number
        self._client = client
        if credentials is None:
            log.warning("twilio_not_configured", mode="mock")

    async def send(self, notification: Notification) -> None:
        if self.credentials is None:
            log.info("mock_sms_sent", to=notification.recipient, body=notification.body)
            return
        if not self.from_number:
            raise NotificationError(SMS, "TWILIO_SMS_FROM_NUMBER not set")

        sid, token = self.credentials
        data = {"From": self.from_number, "To": notification.recipient, "Body": notification.body}
        await _post(SMS, self._client, TWILIO_URL.format(sid=sid), data=data, auth=(sid, token))


async def _post(channel: str, client: httpx.AsyncClient | None, url: str, **kwargs) -> None:
    try:
        if client is not None:
            response = await client.post(url, timeout=10.0, **kwargs)
        else:
            async with httpx.AsyncClient() as owned:
                response = await owned.post(url, timeout=10.0, **kwargs)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise NotificationError(
            channel, f"HTTP {e.response.status_code}: {e.response.text[:200]}"
        ) from e
    except httpx.HTTPError as e:
        raise NotificationError(channel, str(e)) from e


class NotificationDispatcher:
    """Routes notifications to channels and tracks their completion.

    Args:
        channels: Channel implementations keyed by name.
        background: Spawn sends as detached tasks (production). When False,
            ``dispatch`` delivers inline before returning.
    """

    def __init__(self, channels: dict[str, Channel], background: bool = True) -> None:
        self.channels = channels
        self.background = background
        self.sent: Counter[str] = Counter()
        self.failed: Counter[str] = Counter()
        self._pending: set[asyncio.Task[None]] = set()

    @classmethod
    def from_env(cls) -> "NotificationDispatcher":
        return cls(
            {
                EMAIL: EmailChannel(get_sendgrid_api_key(), get_notification_email_from()),
                SMS: SmsChannel(get_twilio_credentials(), get_twilio_from_number()),
            }
        )

    async def dispatch(
        self, notification: Notification, on_delivered: DeliveryCallback | None = None
    ) -> bool:
        """Hand off one notification.

        Returns:
            True if a channel accepted the command. Delivery outcome is
            reflected in ``sent``/``failed`` once the send completes, and
            ``on_delivered`` is awaited only after a successful send.
        """
        channel = self.channels.get(notification.channel)
        if channel is None:
            log.error("notification_channel_unknown", channel=notification.channel)
            return False

        if not self.background:
            await self._deliver(channel, notification, on_delivered)
            return True

        task = asyncio.create_task(self._deliver(channel, notification, on_delivered))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def notify_alert(
        self,
        owner: OwnerContact,
        details: AlertDetails,
        on_delivered: DeliveryCallback | None = None,
    ) -> list[str]:
        """Send an alert to the owner over email and SMS.

        Returns:
            Channels whose send was accepted. Channels that actually delivered
            are reported one by one through ``on_delivered``.
        """
        started_at = details.started_at.strftime("%Y-%m-%d %H:%M:%S UTC")
        email = Notification(
            channel=EMAIL,
            recipient=owner.email,
            subject=templates.alert_email_subject(owner.pet_name, details.severity),
            body=templates.alert_email_html(
                owner.pet_name,
                details.severity,
                details.description,
                started_at,
                details.critical_indicators,
                details.recommended_actions,
                details.video_link,
            ),
            alert_id=details.alert_id,
        )
        sms = Notification(
            channel=SMS,
            recipient=owner.phone,
            body=templates.alert_sms(
                owner.pet_name, details.severity, details.description, details.video_link
            ),
            alert_id=details.alert_id,
        )

        accepted = []
        for notification in (email, sms):
            if await self.dispatch(notification, on_delivered):
                accepted.append(notification.channel)
        return accepted

    async def drain(self) -> None:
        """Wait for all in-flight background sends (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(
        self,
        channel: Channel,
        notification: Notification,
        on_delivered: DeliveryCallback | None = None,
    ) -> None:
        try:
            await channel.send(notification)
        except NotificationError as e:
            self.failed[channel.name] += 1
            metrics.notifications_failed_total.labels(channel=channel.name).inc()
            log.error(
                "notification_failed",
                channel=channel.name,
                alert_id=notification.alert_id,
                error=e.reason,
            )
            return

        self.sent[channel.name] += 1
        metrics.notifications_sent_total.labels(channel=channel.name).inc()
        log.info(
            "notification_sent",
            channel=channel.name,
            alert_id=notification.alert_id,
            recipient=notification.recipient,
        )
        if on_delivered is not None:
            await on_delivered(notification)
