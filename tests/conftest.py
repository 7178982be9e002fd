"""Shared pytest fixtures for async database testing.

Provides an in-memory SQLite database (aiosqlite, StaticPool so every session
sees the same data) and seed rows for users, pets and emergency contacts.
Fakes for the queue and external clients live in tests/support/fakes.py.
"""

from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from petpulse.models import Base, EmergencyContact, Pet, User
from tests.support.fakes import FakeQueue


@pytest_asyncio.fixture
async def async_engine(request, tmp_path):
    """In-memory SQLite engine with all tables created.

    Indirectly parametrize with ``"file"`` to get a file-backed database with
    ``NullPool`` instead, so each session has its own connection (needed when
    background tasks commit concurrently).

    Yields:
        AsyncEngine: Configured test database engine.
    """
    if getattr(request, "param", "memory") == "file":
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path}/db.sqlite",
            echo=False,
            poolclass=NullPool,
        )
    else:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory matching production configuration (expire_on_commit=False)."""
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def async_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def pet(session_factory) -> Pet:
    """Owner "Sam" (with phone) and pet "Biscuit"."""
    async with session_factory() as db, db.begin():
        user = User(name="Sam", email="sam@example.com", phone="+15551230000")
        db.add(user)
        await db.flush()
        pet = Pet(user_id=user.id, name="Biscuit")
        db.add(pet)
        await db.flush()
    return pet


@pytest_asyncio.fixture
async def contacts(session_factory, pet) -> list[EmergencyContact]:
    """Two active contacts (priority 2 and 1) and one inactive contact."""
    rows = [
        EmergencyContact(
            user_id=pet.user_id,
            contact_type="neighbor",
            name="Alex",
            phone="+15550000001",
            priority=2,
        ),
        EmergencyContact(
            user_id=pet.user_id,
            contact_type="veterinarian",
            name="Dr. Lee",
            phone="+15550000002",
            priority=1,
        ),
        EmergencyContact(
            user_id=pet.user_id,
            contact_type="friend",
            name="Old Friend",
            phone="+15550000003",
            priority=3,
            is_active=False,
        ),
    ]
    async with session_factory() as db, db.begin():
        db.add_all(rows)
    return rows


@pytest.fixture
def fake_queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path
