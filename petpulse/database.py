"""Async database engine and session management.

One engine and session factory per process, created at import time when
DATABASE_URL is set. Workers and the escalation engine receive the session
factory through their constructors; the module-level objects are only the
production default that the process entry points hand them.

Session rules:
    - expire_on_commit=False, so rows stay readable after a short transaction
    - never hold a session open across network I/O (fetch, analysis, notify)

Usage:
    from petpulse.database import require_session_factory

    factory = require_session_factory()
    async with factory() as db, db.begin():
        video = await db.get(PetVideo, video_id)
"""

import os
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from petpulse.config import get_database_url


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


def _create_engine() -> AsyncEngine | None:
    # Unset in unit tests and tooling imports; the engine is then never built
    if not os.getenv("DATABASE_URL"):
        return None
    return create_async_engine(
        get_database_url(),
        pool_size=10,
        max_overflow=5,
        pool_pre_ping=True,
        echo=os.getenv("DATABASE_ECHO", "").lower() == "true",
    )


engine: AsyncEngine | None = _create_engine()

async_session_factory: async_sessionmaker[AsyncSession] | None = (
    build_session_factory(engine) if engine is not None else None
)


def require_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the production session factory.

    Raises:
        RuntimeError: If database is not configured.
    """
    if async_session_factory is None:
        raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")
    return async_session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success.

    Route handlers only mutate and flush; any exception rolls the request back.
    """
    factory = require_session_factory()

    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def create_test_engine(
    database_url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Engine plus session factory for tests (in-memory SQLite by default)."""
    test_engine = create_async_engine(database_url, echo=False)
    return test_engine, build_session_factory(test_engine)
