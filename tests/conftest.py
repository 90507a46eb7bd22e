"""
Shared test configuration and fixtures for the credential service tests.

Database tests run against ``TEST_DATABASE_URL`` when it is set (e.g. a
PostgreSQL database reachable through asyncpg) and otherwise against a fresh
SQLite file per test. Redis is replaced by fakeredis.
"""

import os

import fakeredis.aioredis
import pytest
import pytest_asyncio
from argon2 import PasswordHasher, Type
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gov.treasury.authrpd.cache import CacheAside
from gov.treasury.authrpd.keys.store import MemoryKeyStore
from gov.treasury.authrpd.model.base import Base

# Import the models so that their tables are registered on Base.metadata.
import gov.treasury.authrpd.model.audit  # noqa: F401
import gov.treasury.authrpd.model.refresh_token  # noqa: F401
import gov.treasury.authrpd.model.region  # noqa: F401

from tests.test_helpers import FixedClock, utc

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Create async SQLAlchemy engine with all tables created."""
    database_url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'authrpd.db'}"
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def database_session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(database_session_maker):
    """Create async database session for testing."""
    async with database_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def cache(fake_redis_client):
    return CacheAside(fake_redis_client)


@pytest.fixture
def clock():
    """A controllable clock starting mid-month."""
    return FixedClock(utc(2025, 5, 14, 12, 0, 0))


@pytest_asyncio.fixture
async def key_store():
    store = MemoryKeyStore()
    yield store
    await store.close()


@pytest.fixture
def password_hasher():
    """Cheapest argon2id parameters, so hashing does not dominate test time."""
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)
