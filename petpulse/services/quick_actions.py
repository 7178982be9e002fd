"""Quick action generation for high and critical alerts.

For every active emergency contact of the pet's owner (by priority), a short
outreach message is synthesized and stored as a QuickAction. A contact that
already has a ``pending`` action is skipped. The check is a plain read before
the insert, so two concurrent alerts can still both create one; duplicate
outreach is tolerated.

Message text comes from the text-generation service as JSON
``{"sms_text": ..., "email_body": ...}``. Any failure or malformed output
falls back to a fixed template, so a quick action is always created.
"""

import json
import uuid
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from petpulse.clients.gemini import strip_code_fence
from petpulse.exceptions import AnalysisError
from petpulse.models import EmergencyContact, Pet, QuickAction, QuickActionStatus, utcnow
from petpulse.utils.logging import get_logger

log = get_logger(__name__)

QUICK_ACTION_TYPE = "message"


class TextGenerator(Protocol):
    async def generate_text(self, prompt: str) -> str: ...


def build_prompt(pet_name: str, contact: EmergencyContact, severity: str) -> str:
    return (
        f"Write a concise, urgent message from a pet monitoring system regarding {pet_name}. "
        f"The recipient is {contact.name}, who is a {contact.contact_type}. "
        f"Severity: {severity}. The pet is showing unusual behavior. "
        "Generate a JSON object with two fields: 'sms_text' (short, <160 chars) and "
        "'email_body' (polite, informative). Do not use markdown."
    )


def fallback_message(pet_name: str) -> str:
    return json.dumps(
        {
            "sms_text": f"PetPulse Alert: {pet_name} needs attention.",
            "email_body": f"Please check on {pet_name}.",
        }
    )


def normalize_message(text: str) -> str | None:
    """Return the generated JSON message re-serialized, or None if unusable."""
    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    sms_text, email_body = data.get("sms_text"), data.get("email_body")
    if not isinstance(sms_text, str) or not isinstance(email_body, str):
        return None
    return json.dumps({"sms_text": sms_text, "email_body": email_body})


class QuickActionGenerator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        text_generator: TextGenerator,
    ) -> None:
        self.session_factory = session_factory
        self.text_generator = text_generator

    async def generate(self, alert_id: uuid.UUID, pet_id: int, severity: str) -> list[uuid.UUID]:
        """Create quick actions for ``alert_id``.

        Returns:
            IDs of the quick actions created (skipped contacts excluded).
        """
        action_log = log.bind(alert_id=str(alert_id), pet_id=pet_id)

        async with self.session_factory() as db:
            pet = await db.get(Pet, pet_id)
            if pet is None:
                action_log.warning("quick_actions_pet_not_found")
                return []
            pet_name = pet.name
            contacts = (
                (
                    await db.execute(
                        select(EmergencyContact)
                        .where(
                            EmergencyContact.user_id == pet.user_id,
                            EmergencyContact.is_active.is_(True),
                        )
                        .order_by(EmergencyContact.priority, EmergencyContact.id)
                    )
                )
                .scalars()
                .all()
            )

        if not contacts:
            action_log.info("quick_actions_no_contacts")
            return []

        created: list[uuid.UUID] = []
        for contact in contacts:
            if await self._has_pending(contact.id):
                action_log.info("quick_action_skipped_pending", contact_id=contact.id)
                continue

            message = await self._compose(pet_name, contact, severity)
            action_id = await self._persist(alert_id, contact.id, message)
            created.append(action_id)
            action_log.info(
                "quick_action_created",
                contact_id=contact.id,
                quick_action_id=str(action_id),
            )

        action_log.info("quick_actions_generated", created=len(created), severity=severity)
        return created

    async def _has_pending(self, contact_id: int) -> bool:
        async with self.session_factory() as db:
            pending = await db.execute(
                select(QuickAction.id)
                .where(
                    QuickAction.emergency_contact_id == contact_id,
                    QuickAction.status == QuickActionStatus.PENDING,
                )
                .limit(1)
            )
            return pending.first() is not None

    async def _compose(self, pet_name: str, contact: EmergencyContact, severity: str) -> str:
        try:
            text = await self.text_generator.generate_text(build_prompt(pet_name, contact, severity))
        except AnalysisError as e:
            log.error("quick_action_generation_failed", contact_id=contact.id, error=str(e))
            return fallback_message(pet_name)

        message = normalize_message(text)
        if message is None:
            log.warning("quick_action_generation_malformed", contact_id=contact.id)
            return fallback_message(pet_name)
        return message

    async def _persist(self, alert_id: uuid.UUID, contact_id: int, message: str) -> uuid.UUID:
        action = QuickAction(
            alert_id=alert_id,
            emergency_contact_id=contact_id,
            action_type=QUICK_ACTION_TYPE,
            message=message,
            status=QuickActionStatus.PENDING,
        )
        async with self.session_factory() as db, db.begin():
            db.add(action)
            await db.flush()
            action_id = action.id

        # Delivery to the contact is not a blocking transport step
        async with self.session_factory() as db, db.begin():
            stored = await db.get(QuickAction, action_id)
            if stored is not None:
                stored.status = QuickActionStatus.SENT
                stored.sent_at = utcnow()
        return action_id


class UnconfiguredTextGenerator:
    """Stand-in when no text-generation key is configured; every message uses the fallback."""

    async def generate_text(self, prompt: str) -> str:
        raise AnalysisError("Text generation is not configured")
