"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date, datetime, time, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from recycleit.config import Settings
from recycleit.database import close_db, get_engine, get_session, init_db
from recycleit.db.models import Base
from recycleit.dependencies import Services, build_services

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set_date(self, day: date) -> datetime:
        self.now = datetime.combine(day, time(12, 0), tzinfo=timezone.utc)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> Settings:
    """Default settings, isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def redis_mock() -> AsyncMock:
    """Stand-in Redis client recording published events."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session on a fresh in-memory database with the full schema."""
    await init_db(TEST_DATABASE_URL)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async for session in get_session():
        yield session
        await session.close()
        break
    await close_db()


@pytest.fixture
def services(db_session: AsyncSession, clock: FrozenClock, settings: Settings, redis_mock: AsyncMock) -> Services:
    return build_services(db_session, redis=redis_mock, clock=clock, settings=settings)


def published(redis_mock: AsyncMock, channel: str) -> list[str]:
    """Payloads published to one channel, in order."""
    return [call.args[1] for call in redis_mock.publish.await_args_list if call.args[0] == channel]
