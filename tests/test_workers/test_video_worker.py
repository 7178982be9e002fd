"""Tests for VideoWorker.

Covers the claim → fetch → analyze → persist pipeline against an in-memory
database, with fake storage, analysis and alert routing collaborators:
- Success path: analysis fields persisted, digest job enqueued
- Retry path: analysis failures requeue twice, then FAILED
- Malformed storage URI: FAILED without a fetch
- Fetch failure: job left PROCESSING for the stuck-job reaper
- Lease lost to the stuck-job reaper mid-analysis: nothing persisted
- Alert routing for unusual/critical clips only
"""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from petpulse import metrics
from petpulse.exceptions import AnalysisError, BlobFetchError
from petpulse.models import PetVideo, VideoStatus, utcnow
from petpulse.queue import DIGEST_QUEUE, VIDEO_QUEUE
from petpulse.schemas.analysis import AnalysisResult
from petpulse.schemas.jobs import VideoJobMessage
from petpulse.workers.reaper import reap_stuck_jobs
from petpulse.workers.video_worker import VideoWorker
from tests.support.fakes import FakeAnalyzer, FakeFetcher, FakeQueue, FakeRouter, add_video

NORMAL = AnalysisResult.model_validate(
    {
        "activities": [{"activity": "Sleeping", "mood": "Relaxed"}],
        "is_unusual": False,
        "summary_mood": "Relaxed",
        "summary_description": "Napping on the couch",
        "severity_level": "low",
    }
)
UNUSUAL = AnalysisResult.model_validate(
    {"is_unusual": True, "summary_mood": "Anxious", "severity_level": "medium"}
)
CRITICAL = AnalysisResult.model_validate(
    {"is_unusual": True, "severity_level": "critical", "critical_indicators": ["collapse"]}
)


def _worker(session_factory, queue, scratch_dir, *outcomes, fetcher=None, router=None):
    return VideoWorker(
        session_factory,
        queue,
        fetcher or FakeFetcher(),
        FakeAnalyzer(*outcomes),
        router or FakeRouter(),
        scratch_dir=scratch_dir,
    )


async def _load(session_factory, video_id: uuid.UUID) -> PetVideo:
    async with session_factory() as db:
        return await db.get(PetVideo, video_id)


class TestSuccessPath:
    @pytest.mark.asyncio
    async def test_processes_and_enqueues_digest(
        self, session_factory, pet, fake_queue, scratch_dir
    ):
        created = datetime(2024, 5, 1, 23, 30, tzinfo=timezone.utc)
        video = await add_video(session_factory, pet.id, created_at=created)
        worker = _worker(session_factory, fake_queue, scratch_dir, NORMAL)

        status = await worker.process(VideoJobMessage(video_id=video.id))

        assert status is VideoStatus.PROCESSED
        stored = await _load(session_factory, video.id)
        assert stored.status is VideoStatus.PROCESSED
        assert stored.mood == "Relaxed"
        assert stored.description == "Napping on the couch"
        assert stored.is_unusual is False
        assert stored.severity_level == "low"
        assert stored.activities[0]["activity"] == "Sleeping"
        assert stored.analysis_result["summary_mood"] == "Relaxed"

        digests = fake_queue.messages(DIGEST_QUEUE)
        assert len(digests) == 1
        assert digests[0].pet_id == pet.id
        # Digest key is the UTC calendar date of the upload
        assert digests[0].date == date(2024, 5, 1)

    @pytest.mark.asyncio
    async def test_scratch_file_removed(self, session_factory, pet, fake_queue, scratch_dir):
        video = await add_video(session_factory, pet.id)
        worker = _worker(session_factory, fake_queue, scratch_dir, NORMAL)

        await worker.process(VideoJobMessage(video_id=video.id))

        assert list(scratch_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_retrying_job_is_claimable(self, session_factory, pet, fake_queue, scratch_dir):
        video = await add_video(
            session_factory, pet.id, status=VideoStatus.RETRYING, retry_count=1
        )
        worker = _worker(session_factory, fake_queue, scratch_dir, NORMAL)

        assert await worker.process(VideoJobMessage(video_id=video.id)) is VideoStatus.PROCESSED
        assert (await _load(session_factory, video.id)).retry_count == 1

    @pytest.mark.asyncio
    async def test_digest_enqueue_failure_keeps_processed(self, session_factory, pet, scratch_dir):
        video = await add_video(session_factory, pet.id)
        worker = _worker(session_factory, FakeQueue(fail=True), scratch_dir, NORMAL)

        assert await worker.process(VideoJobMessage(video_id=video.id)) is VideoStatus.PROCESSED
        assert (await _load(session_factory, video.id)).status is VideoStatus.PROCESSED


class TestRetryPath:
    @pytest.mark.asyncio
    async def test_analysis_failures_retry_twice_then_fail(
        self, session_factory, pet, fake_queue, scratch_dir
    ):
        video = await add_video(session_factory, pet.id)
        worker = _worker(
            session_factory,
            fake_queue,
            scratch_dir,
            AnalysisError("timeout"),
            AnalysisError("timeout"),
            AnalysisError("timeout"),
        )
        message = VideoJobMessage(video_id=video.id, trace_context={"traceparent": "00-abc"})

        assert await worker.process(message) is VideoStatus.RETRYING
        stored = await _load(session_factory, video.id)
        assert (stored.status, stored.retry_count) == (VideoStatus.RETRYING, 1)

        assert await worker.process(fake_queue.messages(VIDEO_QUEUE)[-1]) is VideoStatus.RETRYING
        stored = await _load(session_factory, video.id)
        assert (stored.status, stored.retry_count) == (VideoStatus.RETRYING, 2)

        assert await worker.process(fake_queue.messages(VIDEO_QUEUE)[-1]) is VideoStatus.FAILED
        stored = await _load(session_factory, video.id)
        assert (stored.status, stored.retry_count) == (VideoStatus.FAILED, 2)

        requeued = fake_queue.messages(VIDEO_QUEUE)
        assert len(requeued) == 2
        assert all(m.trace_context == {"traceparent": "00-abc"} for m in requeued)
        assert fake_queue.messages(DIGEST_QUEUE) == []


class TestFailurePaths:
    @pytest.mark.asyncio
    async def test_malformed_uri_fails_without_fetch(
        self, session_factory, pet, fake_queue, scratch_dir
    ):
        video = await add_video(session_factory, pet.id, file_path="not-a-uri")
        fetcher = FakeFetcher()
        worker = _worker(session_factory, fake_queue, scratch_dir, NORMAL, fetcher=fetcher)

        assert await worker.process(VideoJobMessage(video_id=video.id)) is VideoStatus.FAILED
        assert (await _load(session_factory, video.id)).status is VideoStatus.FAILED
        assert fetcher.calls == []
        assert fake_queue.pushed == []

    @pytest.mark.asyncio
    async def test_fetch_failure_leaves_processing(
        self, session_factory, pet, fake_queue, scratch_dir
    ):
        video = await add_video(session_factory, pet.id)
        fetcher = FakeFetcher(BlobFetchError("pet-videos", "clips/clip.mp4", "connection reset"))
        worker = _worker(session_factory, fake_queue, scratch_dir, NORMAL, fetcher=fetcher)
        before = metrics.REGISTRY.get_sample_value(
            "petpulse_video_processing_errors_total", {"stage": "fetch"}
        ) or 0.0

        assert await worker.process(VideoJobMessage(video_id=video.id)) is VideoStatus.PROCESSING

        stored = await _load(session_factory, video.id)
        assert (stored.status, stored.retry_count) == (VideoStatus.PROCESSING, 0)
        assert fake_queue.pushed == []
        assert (
            metrics.REGISTRY.get_sample_value(
                "petpulse_video_processing_errors_total", {"stage": "fetch"}
            )
            == before + 1
        )

    @pytest.mark.asyncio
    async def test_missing_video_not_claimed(self, session_factory, fake_queue, scratch_dir):
        worker = _worker(session_factory, fake_queue, scratch_dir, NORMAL)
        assert await worker.process(VideoJobMessage(video_id=uuid.uuid4())) is None

    @pytest.mark.asyncio
    async def test_processed_video_not_reclaimed(
        self, session_factory, pet, fake_queue, scratch_dir
    ):
        video = await add_video(session_factory, pet.id, status=VideoStatus.PROCESSED)
        worker = _worker(session_factory, fake_queue, scratch_dir, NORMAL)

        assert await worker.process(VideoJobMessage(video_id=video.id)) is None
        assert fake_queue.pushed == []

    @pytest.mark.asyncio
    async def test_handle_discards_malformed_payload(self, session_factory, fake_queue, scratch_dir):
        worker = _worker(session_factory, fake_queue, scratch_dir)
        await worker.handle(b'{"video_id": "nope"}')
        await worker.handle(None)
        assert fake_queue.pushed == []


class ReapingAnalyzer(FakeAnalyzer):
    """Lets the reaper recover the job while analysis is still running."""

    def __init__(self, session_factory, queue, *outcomes):
        super().__init__(*outcomes)
        self.session_factory = session_factory
        self.queue = queue

    async def analyze(self, video_path):
        later = utcnow() + timedelta(hours=1)
        await reap_stuck_jobs(self.session_factory, self.queue, 60, now=later)
        return await super().analyze(video_path)


class TestLeaseLost:
    @pytest.mark.asyncio
    async def test_result_discarded_after_reaper_requeue(
        self, session_factory, pet, fake_queue, scratch_dir
    ):
        before = metrics.REGISTRY.get_sample_value(
            "petpulse_video_processing_errors_total", {"stage": "lease_lost"}
        ) or 0.0
        video = await add_video(session_factory, pet.id)
        router = FakeRouter()
        worker = VideoWorker(
            session_factory,
            fake_queue,
            FakeFetcher(),
            ReapingAnalyzer(session_factory, fake_queue, UNUSUAL),
            router,
            scratch_dir=scratch_dir,
        )

        assert await worker.process(VideoJobMessage(video_id=video.id)) is None
        await worker.drain()

        stored = await _load(session_factory, video.id)
        assert (stored.status, stored.retry_count) == (VideoStatus.RETRYING, 1)
        assert stored.mood is None
        assert stored.analysis_result is None
        assert [m.video_id for m in fake_queue.messages(VIDEO_QUEUE)] == [video.id]
        assert fake_queue.messages(DIGEST_QUEUE) == []
        assert router.routed == []
        assert (
            metrics.REGISTRY.get_sample_value(
                "petpulse_video_processing_errors_total", {"stage": "lease_lost"}
            )
            == before + 1
        )

    @pytest.mark.asyncio
    async def test_analysis_failure_after_reaper_requeue_not_counted_twice(
        self, session_factory, pet, fake_queue, scratch_dir
    ):
        video = await add_video(session_factory, pet.id)
        worker = VideoWorker(
            session_factory,
            fake_queue,
            FakeFetcher(),
            ReapingAnalyzer(session_factory, fake_queue, AnalysisError("timeout")),
            FakeRouter(),
            scratch_dir=scratch_dir,
        )

        assert await worker.process(VideoJobMessage(video_id=video.id)) is None

        stored = await _load(session_factory, video.id)
        assert (stored.status, stored.retry_count) == (VideoStatus.RETRYING, 1)
        assert len(fake_queue.messages(VIDEO_QUEUE)) == 1

    @pytest.mark.asyncio
    async def test_requeued_job_is_processed_again(
        self, session_factory, pet, fake_queue, scratch_dir
    ):
        video = await add_video(session_factory, pet.id)
        worker = VideoWorker(
            session_factory,
            fake_queue,
            FakeFetcher(),
            ReapingAnalyzer(session_factory, fake_queue, NORMAL),
            FakeRouter(),
            scratch_dir=scratch_dir,
        )
        await worker.process(VideoJobMessage(video_id=video.id))

        retry = _worker(session_factory, fake_queue, scratch_dir, NORMAL)
        assert await retry.process(fake_queue.messages(VIDEO_QUEUE)[-1]) is VideoStatus.PROCESSED

        stored = await _load(session_factory, video.id)
        assert stored.status is VideoStatus.PROCESSED
        assert stored.mood == "Relaxed"


class TestAlertRouting:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(("result", "routed"), [(NORMAL, 0), (UNUSUAL, 1), (CRITICAL, 1)])
    async def test_routes_only_unusual_or_critical(
        self, session_factory, pet, fake_queue, scratch_dir, result, routed
    ):
        video = await add_video(session_factory, pet.id)
        router = FakeRouter()
        worker = _worker(session_factory, fake_queue, scratch_dir, result, router=router)

        await worker.process(VideoJobMessage(video_id=video.id))
        await worker.drain()

        assert len(router.routed) == routed
        if routed:
            assert router.routed[0][:2] == (video.id, pet.id)
