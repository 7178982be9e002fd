"""Video Analysis Worker.

Consumes ``video_queue`` jobs. For each clip it downloads the stored file,
runs the behavior analysis, persists the result onto the PetVideo row, fans
out a digest job and routes an alert when the analysis warrants one.

Architecture Pattern:
    - Short transactions (claim → close DB → fetch/analyze → reopen DB → update)
    - Stateless per job; collaborators are constructor-injected
    - Structured logging bound to video_id and the job's trace context
    - Alert routing is fire-and-forget; the worker never waits for delivery

Transaction Pattern:
    1. Claim: PENDING/RETRYING → PROCESSING (short transaction, committed
       immediately so readers see progress)
    2. Resolve ``scheme://bucket/key``; malformed ⇒ FAILED, never retried
    3. Download to scratch (no DB connection held)
    4. Analyze (no DB connection held)
    5. Update: PROCESSED with analysis fields, or RETRYING/FAILED, only while
       the row is still PROCESSING (row lock, then status check). A row the
       reaper already moved on is a lost lease: logged, nothing written

Error Handling:
    - StorageURIError → FAILED immediately
    - BlobFetchError → error metric only; the job stays PROCESSING and the
      stuck-job reaper recovers it after the processing deadline
    - AnalysisError → retry_count < 2: RETRYING + requeue at tail; else FAILED
    - Anything else → logged; the handler never raises so the consumer loop
      keeps running

Usage:
    worker = VideoWorker(session_factory, job_queue, BlobFetcher(), AnalysisClient(), AlertRouter())
    await worker.handle(job.payload)
"""

import asyncio
import time
import uuid
from datetime import date
from pathlib import Path
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from petpulse import metrics
from petpulse.clients.blob_storage import StorageLocation, parse_storage_uri
from petpulse.config import get_scratch_dir
from petpulse.exceptions import AnalysisError, BlobFetchError, MalformedJobError, StorageURIError
from petpulse.models import PetVideo, VideoStatus, utc_date
from petpulse.queue import DIGEST_QUEUE, VIDEO_QUEUE, QueuePusher
from petpulse.schemas.analysis import AnalysisResult
from petpulse.schemas.jobs import DigestJobMessage, VideoJobMessage
from petpulse.utils.logging import StructuredLogger, get_logger

log = get_logger(__name__)

CLAIMABLE_STATUSES = (VideoStatus.PENDING, VideoStatus.RETRYING)


class Fetcher(Protocol):
    async def fetch(self, location: StorageLocation, destination: Path) -> Path: ...


class Analyzer(Protocol):
    async def analyze(self, video_path: Path) -> AnalysisResult: ...


class Router(Protocol):
    async def route(self, video_id: uuid.UUID, pet_id: int, result: AnalysisResult) -> bool: ...


class VideoWorker:
    """Processes one video job at a time; run N of these via the queue's concurrency limit."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: QueuePusher,
        blob_fetcher: Fetcher,
        analysis_client: Analyzer,
        alert_router: Router,
        scratch_dir: Path | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.blob_fetcher = blob_fetcher
        self.analysis_client = analysis_client
        self.alert_router = alert_router
        self.scratch_dir = scratch_dir or Path(get_scratch_dir())
        self._alert_tasks: set[asyncio.Task[bool]] = set()

    async def handle(self, payload: bytes | None) -> None:
        """Queue entrypoint body. Never raises."""
        try:
            message = VideoJobMessage.parse(payload)
        except MalformedJobError as e:
            metrics.record_processing_error("malformed_job")
            log.error("video_job_malformed", error=str(e))
            return

        try:
            await self.process(message)
        except Exception as e:
            metrics.record_processing_error("unexpected")
            log.error(
                "video_job_unexpected_error",
                exc_info=True,
                video_id=str(message.video_id),
                error=str(e),
            )

    async def process(self, message: VideoJobMessage) -> VideoStatus | None:
        """Run one job through the pipeline.

        Returns:
            The status the job was left in, or None if it was not claimed
            (missing, or not in PENDING/RETRYING) or its lease was lost.
        """
        video_id = message.video_id
        job_log = log.bind(video_id=str(video_id))
        if message.trace_context:
            job_log = job_log.bind(trace_context=message.trace_context)
        job_log.info("video_job_dequeued")
        started = time.monotonic()

        # Step 1: Claim (short transaction)
        async with self.session_factory() as db, db.begin():
            video = await db.get(PetVideo, video_id)
            if video is None:
                job_log.warning("video_not_found")
                return None
            if video.status not in CLAIMABLE_STATUSES:
                job_log.warning("video_job_skipped", status=video.status.value)
                return None

            video.status = VideoStatus.PROCESSING
            pet_id = video.pet_id
            file_path = video.file_path
            created_at = video.created_at
            retry_count = video.retry_count

        job_log.info("video_job_claimed", pet_id=pet_id, retry_count=retry_count)

        # Step 2: Resolve storage location
        try:
            location = parse_storage_uri(file_path)
        except StorageURIError as e:
            metrics.record_processing_error("uri")
            job_log.error("video_storage_uri_invalid", file_path=file_path, error=str(e))
            await self._set_status(video_id, VideoStatus.FAILED, job_log)
            return VideoStatus.FAILED

        scratch_path = self.scratch_dir / f"{video_id}{Path(location.key).suffix or '.mp4'}"
        try:
            # Step 3: Download
            try:
                await self.blob_fetcher.fetch(location, scratch_path)
            except BlobFetchError as e:
                metrics.record_processing_error("fetch")
                job_log.error(
                    "video_fetch_failed",
                    bucket=e.bucket,
                    key=e.key,
                    error=e.reason,
                )
                return VideoStatus.PROCESSING

            # Step 4: Analyze
            try:
                result = await self.analysis_client.analyze(scratch_path)
            except AnalysisError as e:
                metrics.record_processing_error("analysis")
                job_log.error("video_analysis_failed", error=str(e), retry_count=retry_count)
                return await self._record_failure(message, job_log)
        finally:
            scratch_path.unlink(missing_ok=True)

        # Step 5: Persist (short transaction)
        async with self.session_factory() as db, db.begin():
            video = await db.get(PetVideo, video_id, with_for_update=True)
            if video is None:
                job_log.error("video_not_found_on_update")
                return None
            if _lease_lost(video, job_log):
                return None
            _apply_analysis(video, result)

        metrics.videos_processed_total.inc()
        metrics.video_processing_duration_seconds.observe(time.monotonic() - started)
        job_log.info(
            "video_processed",
            pet_id=pet_id,
            is_unusual=result.is_unusual,
            severity_level=result.severity_level.value,
        )

        await self._enqueue_digest(pet_id, utc_date(created_at), job_log)
        self._route_alert(video_id, pet_id, result)
        return VideoStatus.PROCESSED

    async def drain(self) -> None:
        """Wait for in-flight alert deliveries (shutdown and tests)."""
        while self._alert_tasks:
            await asyncio.gather(*list(self._alert_tasks), return_exceptions=True)

    async def _record_failure(
        self, message: VideoJobMessage, job_log: StructuredLogger
    ) -> VideoStatus | None:
        async with self.session_factory() as db, db.begin():
            video = await db.get(PetVideo, message.video_id, with_for_update=True)
            if video is None:
                job_log.error("video_not_found_on_failure")
                return None
            if _lease_lost(video, job_log):
                return None
            if video.can_retry:
                video.retry_count += 1
                video.status = VideoStatus.RETRYING
            else:
                video.status = VideoStatus.FAILED
            status = video.status
            retry_count = video.retry_count

        if status is VideoStatus.FAILED:
            job_log.error("video_failed_permanently", retry_count=retry_count)
            return status

        # A failed push leaves the job RETRYING; the reaper re-pushes it
        try:
            await self.queue.push(
                VIDEO_QUEUE,
                VideoJobMessage(video_id=message.video_id, trace_context=message.trace_context),
            )
        except Exception as e:
            metrics.record_processing_error("requeue")
            job_log.error("video_requeue_failed", error=str(e))
        else:
            job_log.warning("video_requeued", retry_count=retry_count)
        return status

    async def _set_status(
        self, video_id: uuid.UUID, status: VideoStatus, job_log: StructuredLogger
    ) -> None:
        async with self.session_factory() as db, db.begin():
            video = await db.get(PetVideo, video_id, with_for_update=True)
            if video is not None and not _lease_lost(video, job_log):
                video.status = status

    async def _enqueue_digest(self, pet_id: int, day: date, job_log: StructuredLogger) -> None:
        try:
            await self.queue.push(DIGEST_QUEUE, DigestJobMessage(pet_id=pet_id, date=day))
        except Exception as e:
            metrics.record_processing_error("digest_enqueue")
            job_log.error("digest_enqueue_failed", pet_id=pet_id, date=str(day), error=str(e))
            return
        job_log.info("digest_job_enqueued", pet_id=pet_id, date=str(day))

    def _route_alert(self, video_id: uuid.UUID, pet_id: int, result: AnalysisResult) -> None:
        if result.is_unusual:
            metrics.unusual_events_total.inc()
        if result.is_critical:
            metrics.critical_alerts_total.inc()
        if not (result.is_unusual or result.is_critical):
            return

        task = asyncio.create_task(self.alert_router.route(video_id, pet_id, result))
        self._alert_tasks.add(task)

        def _handle_alert_task_done(done: asyncio.Task[bool]) -> None:
            self._alert_tasks.discard(done)
            if not done.cancelled() and done.exception() is not None:
                metrics.alert_webhook_failures_total.inc()
                log.error(
                    "alert_routing_crashed",
                    video_id=str(video_id),
                    error=str(done.exception()),
                )

        task.add_done_callback(_handle_alert_task_done)


def _lease_lost(video: PetVideo, job_log: StructuredLogger) -> bool:
    """True if the reaper (or another worker) moved the row out of PROCESSING."""
    if video.status is VideoStatus.PROCESSING:
        return False
    metrics.record_processing_error("lease_lost")
    job_log.warning("video_lease_lost", status=video.status.value, retry_count=video.retry_count)
    return True


def _apply_analysis(video: PetVideo, result: AnalysisResult) -> None:
    video.status = VideoStatus.PROCESSED
    video.analysis_result = result.model_dump(mode="json")
    video.activities = result.activities_json()
    video.mood = result.summary_mood
    video.description = result.summary_description
    video.is_unusual = result.is_unusual
    video.severity_level = result.severity_level.value
