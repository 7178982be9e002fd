"""Stuck-job recovery and queue depth monitoring.

A worker that dies between claiming a clip and recording its outcome (or a
download that fails) leaves the PetVideo in PROCESSING with no queue message
left to revive it. The reaper treats any PROCESSING row untouched for longer
than the processing deadline as one failed attempt:

    - retry_count < 2 ⇒ retry_count + 1, RETRYING, requeued at the tail
    - otherwise       ⇒ FAILED

RETRYING rows older than the deadline lost their requeue push (the push
happens after the status commit) and are pushed again. Duplicate messages are
harmless: the worker only claims PENDING/RETRYING rows.

Both functions here are single passes; the worker process runs them on an
interval (see petpulse.worker).
"""

import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from petpulse import metrics
from petpulse.models import PetVideo, VideoStatus, utcnow
from petpulse.queue import DIGEST_QUEUE, VIDEO_QUEUE, JobQueue, QueuePusher
from petpulse.schemas.jobs import VideoJobMessage
from petpulse.utils.logging import get_logger

log = get_logger(__name__)


async def reap_stuck_jobs(
    session_factory: async_sessionmaker[AsyncSession],
    queue: QueuePusher,
    deadline_seconds: int,
    now: datetime | None = None,
) -> int:
    """Recover jobs stuck past the processing deadline.

    Args:
        session_factory: Session factory for the job store.
        queue: Where recovered jobs are requeued.
        deadline_seconds: Age of ``updated_at`` after which a job is stuck.
        now: Current time (tests pin it).

    Returns:
        Number of jobs recovered (requeued, re-pushed or failed).
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=deadline_seconds)
    to_push: list[uuid.UUID] = []
    failed = 0

    async with session_factory() as db, db.begin():
        result = await db.execute(
            select(PetVideo)
            .where(
                PetVideo.status.in_([VideoStatus.PROCESSING, VideoStatus.RETRYING]),
                PetVideo.updated_at < cutoff,
            )
            .with_for_update(skip_locked=True)
        )
        for video in result.scalars().all():
            if video.status is VideoStatus.RETRYING:
                video.updated_at = now
                to_push.append(video.id)
                metrics.videos_reaped_total.labels(outcome="repushed").inc()
                log.warning("stuck_retrying_job_repushed", video_id=str(video.id))
            elif video.can_retry:
                video.retry_count += 1
                video.status = VideoStatus.RETRYING
                to_push.append(video.id)
                metrics.videos_reaped_total.labels(outcome="requeued").inc()
                log.warning(
                    "stuck_job_requeued",
                    video_id=str(video.id),
                    retry_count=video.retry_count,
                )
            else:
                video.status = VideoStatus.FAILED
                failed += 1
                metrics.videos_reaped_total.labels(outcome="failed").inc()
                log.error(
                    "stuck_job_failed",
                    video_id=str(video.id),
                    retry_count=video.retry_count,
                )

    for video_id in to_push:
        await queue.push(VIDEO_QUEUE, VideoJobMessage(video_id=video_id))

    recovered = len(to_push) + failed
    if recovered:
        log.info("reaper_pass_complete", recovered=recovered, failed=failed)
    return recovered


async def publish_queue_depth(queue: JobQueue) -> dict[str, int]:
    """Read both queue depths and publish them to the queue depth gauge."""
    depths = {}
    for name in (VIDEO_QUEUE, DIGEST_QUEUE):
        depth = await queue.depth(name)
        metrics.queue_depth.labels(queue=name).set(depth)
        depths[name] = depth
    log.debug("queue_depth_published", **depths)
    return depths
