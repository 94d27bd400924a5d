"""
Shared test fixtures.

Redis is replaced by fakeredis (with Lua support for the commit script) and
the SQL database by a throwaway SQLite file through aiosqlite.
"""

import hashlib
from datetime import datetime, timezone

import base58
import fakeredis
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from aoc.core.service.reservation.models import NFTTier, TierPolicy
from aoc.infra.models import Base
from aoc.infra.repository.reservation_ledger import ReservationLedger


@pytest.fixture
def make_signature():
    """Deterministic base58 encodings of 64-byte signatures."""
    def _make(seed: int) -> str:
        return base58.b58encode(hashlib.sha512(str(seed).encode()).digest()).decode()
    return _make


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def policies():
    return {
        NFTTier.NORMIE: TierPolicy(tier=NFTTier.NORMIE, price_usd=5, supply_cap=10000, user_cap=10),
        NFTTier.SIGMA: TierPolicy(tier=NFTTier.SIGMA, price_usd=25, supply_cap=1000, user_cap=3),
        NFTTier.CHAD: TierPolicy(tier=NFTTier.CHAD, price_usd=269, supply_cap=100, user_cap=1),
    }


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def ledger(redis_client):
    return ReservationLedger(redis_client, key_prefix="test:")


@pytest.fixture
async def db_session(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'aoc.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()
