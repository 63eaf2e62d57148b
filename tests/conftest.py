"""Shared fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mealcart.db.models import Base
from mealcart.pricing.cache import PriceCacheStore


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "price_cache.json"


@pytest.fixture
def cache(cache_path, clock):
    return PriceCacheStore(path=cache_path, clock=clock)


@pytest_asyncio.fixture
async def db_session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
