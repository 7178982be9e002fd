"""Worker process entry point for the video analysis pipeline.

One process runs both queue consumers plus two periodic tasks:

    - PgQueuer consumer: video_queue (N slots) and digest_queue (M slots)
    - Stuck-job reaper: every REAPER_INTERVAL_SECONDS
    - Queue depth monitor: every QUEUE_MONITOR_INTERVAL_SECONDS

Architecture Pattern:
    - Separate Process: scale out by running more worker processes
    - Async Execution: all I/O uses async/await
    - Graceful Shutdown: SIGTERM/SIGINT cancel the consumer and periodic
      tasks, then the asyncpg pool and SQLAlchemy engine are closed

Usage:
    python -m petpulse.worker
"""

import asyncio
import signal
import sys
from collections.abc import Awaitable, Callable

from petpulse import database
from petpulse.clients.agent import AlertRouter
from petpulse.clients.blob_storage import BlobFetcher
from petpulse.clients.gemini import AnalysisClient
from petpulse.config import (
    get_database_url,
    get_digest_worker_concurrency,
    get_processing_deadline_seconds,
    get_queue_monitor_interval_seconds,
    get_reaper_interval_seconds,
    get_video_worker_concurrency,
)
from petpulse.entrypoints import register_entrypoints
from petpulse.queue import initialize_pgqueuer
from petpulse.utils.logging import get_logger
from petpulse.workers.digest_worker import DigestWorker
from petpulse.workers.reaper import publish_queue_depth, reap_stuck_jobs
from petpulse.workers.video_worker import VideoWorker

log = get_logger(__name__)


async def run_periodically(
    name: str, interval: float, action: Callable[[], Awaitable[object]]
) -> None:
    """Run ``action`` every ``interval`` seconds until cancelled.

    A failing pass is logged and the loop continues.
    """
    while True:
        try:
            await action()
        except Exception as e:
            log.error("periodic_task_failed", task=name, error=str(e), exc_info=True)
        await asyncio.sleep(interval)


async def worker_main_loop() -> None:
    """Wire collaborators, register entrypoints and run until a shutdown signal."""
    session_factory = database.require_session_factory()
    pgq, pool, job_queue = await initialize_pgqueuer()

    video_worker = VideoWorker(
        session_factory,
        job_queue,
        BlobFetcher(),
        AnalysisClient(),
        AlertRouter(),
    )
    digest_worker = DigestWorker(session_factory)
    register_entrypoints(
        pgq,
        video_worker,
        digest_worker,
        video_concurrency=get_video_worker_concurrency(),
        digest_concurrency=get_digest_worker_concurrency(),
    )

    deadline = get_processing_deadline_seconds()
    tasks = [
        asyncio.create_task(pgq.run(), name="pgqueuer"),
        asyncio.create_task(
            run_periodically(
                "reaper",
                get_reaper_interval_seconds(),
                lambda: reap_stuck_jobs(session_factory, job_queue, deadline),
            ),
            name="reaper",
        ),
        asyncio.create_task(
            run_periodically(
                "queue_monitor",
                get_queue_monitor_interval_seconds(),
                lambda: publish_queue_depth(job_queue),
            ),
            name="queue_monitor",
        ),
    ]

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, _request_shutdown, signum, tasks)

    log.info("worker_started", deadline_seconds=deadline)
    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        log.info("worker_cancelled")
    finally:
        await video_worker.drain()
        await pool.close()
        log.info("asyncpg_pool_closed")
        if database.engine is not None:
            await database.engine.dispose()
            log.info("sqlalchemy_engine_closed")


def _request_shutdown(signum: int, tasks: list[asyncio.Task]) -> None:
    log.info("shutdown_signal_received", signal_name=signal.Signals(signum).name)
    for task in tasks:
        task.cancel()


def main() -> None:
    """Worker process entry point.

    Exit Codes:
        0: Clean shutdown
        1: Fatal error (configuration invalid, database unreachable)
    """
    try:
        database_url = get_database_url()
    except ValueError as e:
        log.error("configuration_load_failed", error=str(e))
        sys.exit(1)

    # Redact credentials when logging
    host = database_url.split("@")[-1].split("/")[0] if "@" in database_url else "local"
    log.info("worker_configuration_loaded", database_url_host=host)

    try:
        asyncio.run(worker_main_loop())
    except Exception as e:
        log.error("worker_fatal_error", error=str(e), exc_info=True)
        sys.exit(1)
    log.info("worker_exited_successfully")


if __name__ == "__main__":
    main()
