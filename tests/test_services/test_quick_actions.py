"""Tests for QuickActionGenerator."""

import json
import uuid

import pytest
from sqlalchemy import select

from petpulse.exceptions import AnalysisError
from petpulse.models import Alert, QuickAction, QuickActionStatus, SeverityLevel
from petpulse.services.quick_actions import (
    QuickActionGenerator,
    UnconfiguredTextGenerator,
    fallback_message,
    normalize_message,
)
from tests.support.fakes import FakeTextGenerator


async def _alert(session_factory, pet_id: int) -> uuid.UUID:
    alert = Alert(
        id=uuid.uuid4(),
        pet_id=pet_id,
        alert_type="unusual_behavior",
        severity="high",
        severity_level=SeverityLevel.HIGH,
        payload={},
    )
    async with session_factory() as db, db.begin():
        db.add(alert)
    return alert.id


async def _actions(session_factory) -> list[QuickAction]:
    async with session_factory() as db:
        return list((await db.execute(select(QuickAction))).scalars().all())


class TestNormalizeMessage:
    def test_fenced_json_accepted(self):
        text = '```json\n{"sms_text": "Check Biscuit", "email_body": "Please check"}\n```'
        assert json.loads(normalize_message(text)) == {
            "sms_text": "Check Biscuit",
            "email_body": "Please check",
        }

    @pytest.mark.parametrize(
        "text", ["plain prose", "[]", '{"sms_text": "only sms"}', '{"sms_text": 1, "email_body": 2}']
    )
    def test_unusable_output_rejected(self, text):
        assert normalize_message(text) is None


class TestQuickActionGenerator:
    @pytest.mark.asyncio
    async def test_one_action_per_active_contact(self, session_factory, pet, contacts):
        alert_id = await _alert(session_factory, pet.id)
        generator = QuickActionGenerator(session_factory, FakeTextGenerator())

        created = await generator.generate(alert_id, pet.id, "high")

        assert len(created) == 2
        actions = await _actions(session_factory)
        assert {a.status for a in actions} == {QuickActionStatus.SENT}
        assert all(a.sent_at is not None for a in actions)
        assert all(a.alert_id == alert_id for a in actions)
        assert {a.action_type for a in actions} == {"message"}

    @pytest.mark.asyncio
    async def test_contact_with_pending_action_skipped(self, session_factory, pet, contacts):
        alert_id = await _alert(session_factory, pet.id)
        async with session_factory() as db, db.begin():
            db.add(
                QuickAction(
                    alert_id=alert_id,
                    emergency_contact_id=contacts[1].id,
                    action_type="message",
                    message="{}",
                    status=QuickActionStatus.PENDING,
                )
            )
        text_generator = FakeTextGenerator()
        generator = QuickActionGenerator(session_factory, text_generator)

        created = await generator.generate(alert_id, pet.id, "critical")

        assert len(created) == 1
        assert len(text_generator.prompts) == 1
        assert "Alex" in text_generator.prompts[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text_generator",
        [
            FakeTextGenerator(AnalysisError("quota")),
            FakeTextGenerator("sure, here you go"),
            UnconfiguredTextGenerator(),
        ],
    )
    async def test_generation_failure_uses_fallback(
        self, session_factory, pet, contacts, text_generator
    ):
        alert_id = await _alert(session_factory, pet.id)
        generator = QuickActionGenerator(session_factory, text_generator)

        await generator.generate(alert_id, pet.id, "high")

        actions = await _actions(session_factory)
        assert len(actions) == 2
        assert {a.message for a in actions} == {fallback_message("Biscuit")}

    @pytest.mark.asyncio
    async def test_no_contacts(self, session_factory, pet):
        alert_id = await _alert(session_factory, pet.id)
        generator = QuickActionGenerator(session_factory, FakeTextGenerator())
        assert await generator.generate(alert_id, pet.id, "high") == []

    @pytest.mark.asyncio
    async def test_missing_pet(self, session_factory):
        generator = QuickActionGenerator(session_factory, FakeTextGenerator())
        assert await generator.generate(uuid.uuid4(), 999, "high") == []
