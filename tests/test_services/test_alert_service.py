"""Tests for acknowledgement, resolution and listing of alerts."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from petpulse import metrics
from petpulse.models import Alert, SeverityLevel
from petpulse.services import alert_service

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


async def _add_alert(session_factory, pet_id: int, level: SeverityLevel, **fields) -> Alert:
    alert = Alert(
        id=uuid.uuid4(),
        pet_id=pet_id,
        alert_type="unusual_behavior",
        severity=level.value,
        severity_level=level,
        payload={},
        **fields,
    )
    async with session_factory() as db, db.begin():
        db.add(alert)
    return alert


class TestListCriticalAlerts:
    @pytest.mark.asyncio
    async def test_newest_first_critical_only(self, session_factory, pet):
        older = await _add_alert(
            session_factory, pet.id, SeverityLevel.CRITICAL, created_at=NOW - timedelta(hours=1)
        )
        newer = await _add_alert(session_factory, pet.id, SeverityLevel.CRITICAL, created_at=NOW)
        await _add_alert(session_factory, pet.id, SeverityLevel.HIGH, created_at=NOW)

        async with session_factory() as db:
            alerts = await alert_service.list_critical_alerts(db)

        assert [a.id for a in alerts] == [newer.id, older.id]


class TestAcknowledgeAlert:
    @pytest.mark.asyncio
    async def test_records_response_and_latency(self, session_factory, pet):
        alert = await _add_alert(
            session_factory,
            pet.id,
            SeverityLevel.CRITICAL,
            user_notified_at=NOW - timedelta(minutes=5),
        )
        count_before = metrics.REGISTRY.get_sample_value(
            "petpulse_alert_acknowledgment_duration_seconds_count"
        )

        async with session_factory() as db, db.begin():
            acked = await alert_service.acknowledge_alert(db, alert.id, "On my way", now=NOW)

        assert acked.user_response == "On my way"
        assert acked.outcome == alert_service.OUTCOME_ACKNOWLEDGED
        async with session_factory() as db:
            stored = await db.get(Alert, alert.id)
        assert stored.user_acknowledged_at is not None
        assert (
            metrics.REGISTRY.get_sample_value(
                "petpulse_alert_acknowledgment_duration_seconds_count"
            )
            == count_before + 1
        )

    @pytest.mark.asyncio
    async def test_missing_alert(self, session_factory):
        async with session_factory() as db:
            assert await alert_service.acknowledge_alert(db, uuid.uuid4(), None) is None


class TestResolveAlert:
    @pytest.mark.asyncio
    async def test_sets_outcome(self, session_factory, pet):
        alert = await _add_alert(session_factory, pet.id, SeverityLevel.HIGH)

        async with session_factory() as db, db.begin():
            await alert_service.resolve_alert(db, alert.id)

        async with session_factory() as db:
            assert (await db.get(Alert, alert.id)).outcome == "Resolved"

    @pytest.mark.asyncio
    async def test_missing_alert(self, session_factory):
        async with session_factory() as db:
            assert await alert_service.resolve_alert(db, uuid.uuid4()) is None
