"""PgQueuer entrypoint definitions for the video analysis pipeline.

Entrypoints:
    - video_queue: VideoWorker.handle (N concurrent, VIDEO_WORKER_CONCURRENCY)
    - digest_queue: DigestWorker.handle (M concurrent, DIGEST_WORKER_CONCURRENCY)

Each entrypoint claims one job at a time per concurrency slot; the worker
objects follow the short transaction pattern and never raise, so a failing
job never stops the consumer loop.

References:
    - PgQueuer Documentation: https://pgqueuer.readthedocs.io/
"""

from pgqueuer import PgQueuer
from pgqueuer.models import Job

from petpulse.queue import DIGEST_QUEUE, VIDEO_QUEUE
from petpulse.utils.logging import get_logger
from petpulse.workers.digest_worker import DigestWorker
from petpulse.workers.video_worker import VideoWorker

log = get_logger(__name__)


def register_entrypoints(
    pgq: PgQueuer,
    video_worker: VideoWorker,
    digest_worker: DigestWorker,
    video_concurrency: int,
    digest_concurrency: int,
) -> None:
    """Register both queue handlers with the PgQueuer instance.

    Must be called after PgQueuer is initialized and before ``pgq.run()``.
    """

    @pgq.entrypoint(VIDEO_QUEUE, concurrency_limit=video_concurrency)
    async def process_video(job: Job) -> None:
        log.debug("video_job_claimed_from_queue", pgqueuer_job_id=str(job.id))
        await video_worker.handle(job.payload)

    @pgq.entrypoint(DIGEST_QUEUE, concurrency_limit=digest_concurrency)
    async def process_digest(job: Job) -> None:
        log.debug("digest_job_claimed_from_queue", pgqueuer_job_id=str(job.id))
        await digest_worker.handle(job.payload)

    log.info(
        "entrypoints_registered",
        video_concurrency=video_concurrency,
        digest_concurrency=digest_concurrency,
    )
