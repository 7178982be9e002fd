"""PgQueuer initialization and the durable FIFO job queue.

Two logical queues share one PgQueuer table, distinguished by entrypoint name:

    - ``video_queue``: ``{"video_id": ..., "trace_context"?: ...}``
    - ``digest_queue``: ``{"pet_id": ..., "date": "YYYY-MM-DD"}``

Architecture Pattern:
    - AsyncpgPoolDriver: Connection pool shared by the consumer loop and pushes
    - QueueManager: Schema installation (idempotent)
    - JobQueue: Thin push/depth wrapper handed to workers and the reaper, so
      they never touch PgQueuer directly and tests can substitute a fake
    - Blocking pop: PgQueuer's LISTEN/NOTIFY wait inside ``PgQueuer.run()``;
      jobs are claimed with FOR UPDATE SKIP LOCKED, oldest first

Usage:
    from petpulse.queue import initialize_pgqueuer

    pgq, pool, job_queue = await initialize_pgqueuer()
    register_entrypoints(pgq, job_queue, ...)
    await pgq.run()

References:
    - PgQueuer Documentation: https://pgqueuer.readthedocs.io/
"""

from typing import Protocol

import asyncpg
from pgqueuer import PgQueuer
from pgqueuer.db import AsyncpgPoolDriver
from pgqueuer.qm import QueueManager
from pgqueuer.queries import Queries

from petpulse.config import get_queue_dsn
from petpulse.schemas.jobs import JobMessage
from petpulse.utils.logging import get_logger

log = get_logger(__name__)

VIDEO_QUEUE = "video_queue"
DIGEST_QUEUE = "digest_queue"


class QueuePusher(Protocol):
    """What workers need from the queue: push a message onto the tail."""

    async def push(self, queue_name: str, message: JobMessage) -> None: ...


class JobQueue:
    """Push and inspect jobs on the PgQueuer-backed queues."""

    def __init__(self, queries: Queries):
        self._queries = queries

    async def push(self, queue_name: str, message: JobMessage) -> None:
        """Append a message to the tail of ``queue_name``."""
        await self._queries.enqueue(queue_name, message.to_bytes())
        log.debug("job_enqueued", queue=queue_name)

    async def depth(self, queue_name: str) -> int:
        """Number of jobs waiting (not yet picked) on ``queue_name``."""
        stats = await self._queries.queue_size()
        return sum(s.count for s in stats if s.entrypoint == queue_name and s.status == "queued")


async def initialize_pgqueuer() -> tuple[PgQueuer, asyncpg.Pool, JobQueue]:
    """Create the asyncpg pool, install the PgQueuer schema and build the consumer.

    Returns:
        tuple[PgQueuer, asyncpg.Pool, JobQueue]: Consumer, pool (caller closes
        it on shutdown) and the push/depth wrapper sharing the same driver.

    Raises:
        ValueError: If DATABASE_URL not set
        asyncpg.PostgresError: If database connection fails
    """
    dsn = get_queue_dsn()

    log.info("initializing_asyncpg_pool", min_size=2, max_size=10, timeout=30)
    pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=2,
        max_size=10,
        timeout=30,  # Connection acquire timeout (seconds)
        command_timeout=60,
    )

    driver = AsyncpgPoolDriver(pool)

    # Idempotent: safe to call on every start
    log.info("installing_pgqueuer_schema")
    qm = QueueManager(driver)
    await qm.queries.install()
    log.info("pgqueuer_schema_installed")

    pgq = PgQueuer(driver)
    job_queue = JobQueue(Queries(driver))

    log.info("pgqueuer_initialized", queues=[VIDEO_QUEUE, DIGEST_QUEUE])
    return pgq, pool, job_queue
