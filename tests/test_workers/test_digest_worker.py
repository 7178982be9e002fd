"""Tests for DigestWorker and digest aggregation."""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from petpulse.models import DailyDigest, VideoStatus
from petpulse.schemas.jobs import DigestJobMessage
from petpulse.workers.digest_worker import DigestWorker, aggregate_digest
from tests.support.fakes import add_video

DAY = date(2024, 5, 1)


def _at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


async def _seed_day(session_factory, pet_id: int) -> None:
    await add_video(
        session_factory,
        pet_id,
        status=VideoStatus.PROCESSED,
        created_at=_at(9),
        mood="Happy",
        description="Playing fetch",
        activities=[{"activity": "Playing"}],
        is_unusual=False,
    )
    await add_video(
        session_factory,
        pet_id,
        status=VideoStatus.PROCESSED,
        created_at=_at(14),
        mood="Anxious",
        description="Pacing by the door",
        activities=[{"activity": "Pacing"}, {"activity": "Whining"}],
        is_unusual=True,
    )
    await add_video(
        session_factory,
        pet_id,
        status=VideoStatus.PROCESSED,
        created_at=_at(20),
        mood="Happy",
        description=None,
        activities=[],
        is_unusual=True,
    )
    # Excluded: other day, and not yet processed
    await add_video(
        session_factory,
        pet_id,
        status=VideoStatus.PROCESSED,
        created_at=_at(9, day=DAY + timedelta(days=1)),
        mood="Sleepy",
    )
    await add_video(session_factory, pet_id, status=VideoStatus.PENDING, created_at=_at(10))


async def _digests(session_factory) -> list[DailyDigest]:
    async with session_factory() as db:
        return list((await db.execute(select(DailyDigest))).scalars().all())


class TestDigestWorker:
    @pytest.mark.asyncio
    async def test_aggregates_processed_clips_for_the_day(self, session_factory, pet):
        await _seed_day(session_factory, pet.id)

        aggregate = await DigestWorker(session_factory).process(
            DigestJobMessage(pet_id=pet.id, date=DAY)
        )

        assert aggregate.total_videos == 3
        digests = await _digests(session_factory)
        assert len(digests) == 1
        digest = digests[0]
        assert digest.date == DAY
        assert digest.total_videos == 3
        assert digest.moods == ["Happy", "Anxious", "Happy"]
        assert [a["activity"] for a in digest.activities] == ["Playing", "Pacing", "Whining"]
        assert len(digest.unusual_events) == 2
        assert digest.unusual_events[0]["description"] == "Pacing by the door"
        assert digest.unusual_events[1]["description"] == "Unusual activity detected"
        assert digest.unusual_events[0]["timestamp"].startswith("2024-05-01T14:00:00")
        assert digest.summary == (
            f"Daily Summary for Pet {pet.id}\n\n"
            "Videos Processed: 3\n"
            "Moods: Happy, Anxious\n"
            "Unusual Events: 2\n\n"
            "Descriptions:\nPlaying fetch\n\nPacing by the door"
        )

    @pytest.mark.asyncio
    async def test_rerun_overwrites_single_row(self, session_factory, pet):
        await _seed_day(session_factory, pet.id)
        worker = DigestWorker(session_factory)
        message = DigestJobMessage(pet_id=pet.id, date=DAY)

        await worker.process(message)
        first = (await _digests(session_factory))[0]
        await worker.process(message)
        digests = await _digests(session_factory)

        assert len(digests) == 1
        assert digests[0].id == first.id
        assert digests[0].summary == first.summary
        assert digests[0].moods == first.moods

    @pytest.mark.asyncio
    async def test_new_clip_updates_existing_digest(self, session_factory, pet):
        await _seed_day(session_factory, pet.id)
        worker = DigestWorker(session_factory)
        message = DigestJobMessage(pet_id=pet.id, date=DAY)
        await worker.process(message)

        await add_video(
            session_factory,
            pet.id,
            status=VideoStatus.PROCESSED,
            created_at=_at(22),
            mood="Sleepy",
        )
        await worker.process(message)

        digests = await _digests(session_factory)
        assert len(digests) == 1
        assert digests[0].total_videos == 4

    @pytest.mark.asyncio
    async def test_no_processed_clips_writes_nothing(self, session_factory, pet):
        await add_video(session_factory, pet.id, status=VideoStatus.PENDING, created_at=_at(9))

        result = await DigestWorker(session_factory).process(
            DigestJobMessage(pet_id=pet.id, date=DAY)
        )

        assert result is None
        assert await _digests(session_factory) == []

    @pytest.mark.asyncio
    async def test_handle_discards_malformed_payload(self, session_factory):
        await DigestWorker(session_factory).handle(b'{"pet_id": 1}')
        assert await _digests(session_factory) == []


class TestAggregateDigest:
    def test_empty_descriptions_and_moods(self):
        aggregate = aggregate_digest(9, [])
        assert aggregate.summary == (
            "Daily Summary for Pet 9\n\n"
            "Videos Processed: 0\n"
            "Moods: None\n"
            "Unusual Events: 0\n\n"
            "Descriptions:\nNo descriptions available."
        )
