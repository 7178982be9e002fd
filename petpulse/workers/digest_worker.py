"""Daily Digest Worker.

Consumes ``digest_queue`` jobs ``{pet_id, date}`` and recomputes the pet's
DailyDigest for that calendar day from every PROCESSED clip.

Architecture Pattern:
    - Full recompute, order-independent: clips are read in (created_at, id)
      order so repeated runs over the same clip set produce identical output
    - Find-then-upsert keyed by (pet_id, date); a unique-constraint race with
      a concurrent worker is resolved by retrying once as an update
    - Handler never raises so the consumer loop keeps running

Edge cases:
    - No PROCESSED clips for the day: warning, nothing written. A digest job
      can race ahead of its clip's persistence; the next job for the same key
      catches up.
"""

import datetime as dt
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from petpulse import metrics
from petpulse.exceptions import MalformedJobError
from petpulse.models import DailyDigest, PetVideo, VideoStatus, utc_date, utcnow
from petpulse.schemas.jobs import DigestJobMessage
from petpulse.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_UNUSUAL_DESCRIPTION = "Unusual activity detected"


@dataclass
class DigestAggregate:
    summary: str
    moods: list[str] = field(default_factory=list)
    activities: list[dict[str, Any]] = field(default_factory=list)
    unusual_events: list[dict[str, Any]] = field(default_factory=list)
    total_videos: int = 0


def _rfc3339(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.isoformat()


def aggregate_digest(pet_id: int, videos: list[PetVideo]) -> DigestAggregate:
    """Fold a day's processed clips into digest fields.

    Activities are concatenated verbatim, moods kept as a multiset, and every
    unusual clip contributes one ``{video_id, description, timestamp}`` event.
    The summary lists distinct moods in first-seen order.
    """
    activities: list[dict[str, Any]] = []
    moods: list[str] = []
    descriptions: list[str] = []
    unusual_events: list[dict[str, Any]] = []

    for video in videos:
        activities.extend(video.activities or [])
        if video.mood:
            moods.append(video.mood)
        if video.description:
            descriptions.append(video.description)
        if video.is_unusual:
            unusual_events.append(
                {
                    "video_id": str(video.id),
                    "description": video.description or DEFAULT_UNUSUAL_DESCRIPTION,
                    "timestamp": _rfc3339(video.created_at),
                }
            )

    distinct_moods = list(dict.fromkeys(moods))
    descriptions_text = "\n\n".join(descriptions) if descriptions else "No descriptions available."
    summary = (
        f"Daily Summary for Pet {pet_id}\n\n"
        f"Videos Processed: {len(videos)}\n"
        f"Moods: {', '.join(distinct_moods) if distinct_moods else 'None'}\n"
        f"Unusual Events: {len(unusual_events)}\n\n"
        f"Descriptions:\n{descriptions_text}"
    )
    return DigestAggregate(
        summary=summary,
        moods=moods,
        activities=activities,
        unusual_events=unusual_events,
        total_videos=len(videos),
    )


class DigestWorker:
    """Aggregates one (pet, date) key at a time; run M of these via the queue's concurrency limit."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def handle(self, payload: bytes | None) -> None:
        """Queue entrypoint body. Never raises."""
        try:
            message = DigestJobMessage.parse(payload)
        except MalformedJobError as e:
            log.error("digest_job_malformed", error=str(e))
            return

        try:
            await self.process(message)
        except Exception as e:
            log.error(
                "digest_job_unexpected_error",
                exc_info=True,
                pet_id=message.pet_id,
                date=str(message.date),
                error=str(e),
            )

    async def process(self, message: DigestJobMessage) -> DigestAggregate | None:
        """Recompute and upsert the digest for ``message``'s key.

        Returns:
            The aggregate written, or None if there were no processed clips.
        """
        pet_id, day = message.pet_id, message.date
        job_log = log.bind(pet_id=pet_id, date=day.isoformat())

        async with self.session_factory() as db:
            result = await db.execute(
                select(PetVideo)
                .where(PetVideo.pet_id == pet_id, PetVideo.status == VideoStatus.PROCESSED)
                .order_by(PetVideo.created_at, PetVideo.id)
            )
            # Timestamps carry offsets; compare UTC calendar dates here
            videos = [v for v in result.scalars().all() if utc_date(v.created_at) == day]

        if not videos:
            job_log.warning("digest_no_processed_videos")
            return None

        aggregate = aggregate_digest(pet_id, videos)
        job_log.info("digest_aggregated", total_videos=aggregate.total_videos)

        try:
            created = await self._upsert(pet_id, day, aggregate)
        except IntegrityError:
            # Lost an insert race for the same key; the row exists now
            job_log.warning("digest_insert_race_retrying")
            created = await self._upsert(pet_id, day, aggregate)

        metrics.daily_digests_generated_total.inc()
        job_log.info("digest_upserted", created=created)
        return aggregate

    async def _upsert(self, pet_id: int, day: dt.date, aggregate: DigestAggregate) -> bool:
        async with self.session_factory() as db, db.begin():
            existing = (
                await db.execute(
                    select(DailyDigest).where(
                        DailyDigest.pet_id == pet_id, DailyDigest.date == day
                    )
                )
            ).scalar_one_or_none()

            if existing is not None:
                existing.summary = aggregate.summary
                existing.moods = aggregate.moods
                existing.activities = aggregate.activities
                existing.unusual_events = aggregate.unusual_events
                existing.total_videos = aggregate.total_videos
                existing.updated_at = utcnow()
                return False

            db.add(
                DailyDigest(
                    pet_id=pet_id,
                    date=day,
                    summary=aggregate.summary,
                    moods=aggregate.moods,
                    activities=aggregate.activities,
                    unusual_events=aggregate.unusual_events,
                    total_videos=aggregate.total_videos,
                )
            )
            return True
