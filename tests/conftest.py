"""Shared test fixtures.

Tests run against an in-memory SQLite database (aiosqlite) with the schema
created from the ORM metadata. Redis is replaced by an AsyncMock.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

os.environ.setdefault("APPTIME_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("APPTIME_SCHEDULER_ENABLED", "false")
os.environ.setdefault("APPTIME_LOG_FORMAT", "console")

from apptime import redis_client  # noqa: E402
from apptime.config import get_settings  # noqa: E402
from apptime.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from apptime.db.base import Base  # noqa: E402
from apptime.db.models import Challenge, ChallengeParticipant, UsageEvent  # noqa: E402
from apptime.main import create_app  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite://"


@pytest.fixture(autouse=True)
def _fresh_settings() -> None:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[None, None]:
    """Fresh in-memory database per test."""
    await init_db(TEST_DB_URL)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(db_engine: None) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for service tests and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def mock_redis(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """Stand-in for the Redis pool."""
    redis = AsyncMock()
    redis.ping = AsyncMock(return_value=True)
    redis.publish = AsyncMock(return_value=1)
    monkeypatch.setattr(redis_client, "_pool", redis)
    return redis


@pytest_asyncio.fixture
async def client(db_engine: None, mock_redis: AsyncMock) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app. The lifespan is not run; the DB is set up by db_engine."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


async def add_event(
    db: AsyncSession,
    user_id: str,
    timestamp: datetime,
    duration_ms: int | None,
    package_name: str = "com.example.app",
) -> UsageEvent:
    event = UsageEvent(
        user_id=user_id,
        package_name=package_name,
        app_name=package_name.rsplit(".", 1)[-1],
        event_timestamp=timestamp,
        duration_ms=duration_ms,
    )
    db.add(event)
    await db.flush()
    return event


async def add_challenge(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    challenge_type: str = "LESS_SCREENTIME",
    title: str = "Digital Detox",
    package_names: str | None = None,
) -> Challenge:
    challenge = Challenge(
        title=title,
        challenge_type=challenge_type,
        package_names=package_names,
        start_time=start,
        end_time=end,
        is_active=True,
    )
    db.add(challenge)
    await db.flush()
    return challenge


async def add_participant(
    db: AsyncSession, challenge: Challenge, user_id: str, joined_at: datetime | None = None,
) -> ChallengeParticipant:
    participant = ChallengeParticipant(
        challenge_id=challenge.id,
        user_id=user_id,
        joined_at=joined_at or challenge.start_time - timedelta(hours=1),
    )
    db.add(participant)
    await db.flush()
    return participant
