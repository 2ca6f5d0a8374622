"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import timedelta

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from sqlqueue.api.main import create_app
from sqlqueue.config import Settings
from sqlqueue.db import Storage, StorageRepository, get_test_engine, utcnow

# Set TEST_DATABASE_URL to run against PostgreSQL; a throwaway SQLite file is used otherwise
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL."""
    return TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'sqlqueue.db'}"


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings with short intervals."""
    return Settings(
        database_url=database_url,
        table_prefix="test_",
        queue_poll_interval_seconds=0.05,
        invisibility_timeout_seconds=60,
        lock_timeout_seconds=5,
        lock_poll_interval_seconds=0.01,
        lock_expiration_seconds=600,
        job_expiration_check_interval_seconds=0.05,
        counters_aggregate_interval_seconds=0.05,
        batch_size=1000,
        expiration_batch_delay_seconds=0.01,
        aggregation_batch_delay_seconds=0.01,
        server_retry_delay_seconds=0.05,
        log_level="WARNING",
        log_format="console",
    )


@pytest_asyncio.fixture
async def storage(test_settings: Settings) -> AsyncGenerator[Storage]:
    """Create an installed store and drop its tables afterwards."""
    storage = Storage(test_settings, engine=get_test_engine(test_settings.database_url))
    await storage.install()

    yield storage

    async with storage.engine.begin() as conn:
        await conn.run_sync(storage.schema.metadata.drop_all)
    await storage.dispose()


@pytest.fixture
def make_storage(storage: Storage) -> Callable[..., Storage]:
    """Build stores sharing the test engine with some settings overridden."""

    def factory(**overrides) -> Storage:
        settings = storage.settings.model_copy(update=overrides)
        return Storage(settings, engine=storage.engine)

    return factory


@pytest_asyncio.fixture
async def db_session(storage: Storage) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with storage.session() as session:
        yield session


@pytest.fixture
def repo(db_session: AsyncSession, storage: Storage) -> StorageRepository:
    """Repository bound to the test session."""
    return StorageRepository(db_session, storage.schema)


@pytest.fixture
def age_claim(storage: Storage) -> Callable[[int, float], Awaitable[None]]:
    """Move an entry's claim time into the past."""

    async def age(entry_id: int, seconds: float) -> None:
        table = storage.schema.job_queue
        async with storage.session() as session:
            await session.execute(
                update(table)
                .where(table.c.id == entry_id)
                .values(claimed_at=utcnow() - timedelta(seconds=seconds))
            )

    return age


@pytest_asyncio.fixture
async def app(storage: Storage) -> FastAPI:
    """Create a FastAPI app serving the test store."""
    return create_app(storage)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
