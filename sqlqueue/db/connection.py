"""
Database connection management.
Handles async SQLAlchemy engine and session creation for one store.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from sqlqueue.config import Settings, get_settings
from sqlqueue.db.models import Schema, get_schema
from sqlqueue.observability.logging import get_logger

if TYPE_CHECKING:
    from sqlqueue.maintenance import CountersAggregator, ExpirationManager
    from sqlqueue.queue import JobQueue, QueueMonitoringApi


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Create the async database engine for the configured URL.

    Args:
        settings: Application settings.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    options: dict[str, Any] = {
        "echo": settings.log_level == "DEBUG",
        "pool_pre_ping": True,
    }
    if not settings.is_sqlite:
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return create_async_engine(settings.database_url, **options)


def get_test_engine(database_url: str) -> AsyncEngine:
    """
    Create a test database engine with NullPool.

    Args:
        database_url: The database URL for testing.

    Returns:
        AsyncEngine: The test SQLAlchemy async engine instance.
    """
    return create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )


class Storage:
    """
    Entry point to one durable store.

    Owns the engine, the session factory and the prefixed table set.
    Every logical operation opens its own session; sessions are never
    shared between concurrent operations.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        engine: AsyncEngine | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize the storage.

        Args:
            settings: Application settings. Defaults to environment settings.
            engine: Prebuilt engine. Created from settings when omitted.
            logger: Logger passed on to the components built here.
        """
        self.settings = settings or get_settings()
        self.engine = engine or create_engine_from_settings(self.settings)
        self.schema: Schema = get_schema(self.settings.table_prefix)
        self.logger = logger or get_logger(__name__)
        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Context manager for a short-lived session.
        Commits on success and rolls back on error.

        Yields:
            AsyncSession: An async database session.
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def open_session(self) -> AsyncSession:
        """
        Open a session whose lifetime the caller manages.
        Must be closed with ``release_session``.
        """
        return self._session_factory()

    async def release_session(self, session: AsyncSession | None) -> None:
        """Roll back anything uncommitted and close the session."""
        if session is None:
            return
        try:
            await session.rollback()
        finally:
            await session.close()

    async def install(self) -> bool:
        """
        Create the store's tables if they do not exist yet.

        Returns:
            True if tables were created, False if they already existed.
        """
        async with self.engine.begin() as conn:
            existing = await conn.run_sync(
                lambda sync_conn: set(inspect(sync_conn).get_table_names())
            )
            missing = [
                table
                for table in self.schema.metadata.sorted_tables
                if table.name not in existing
            ]
            if not missing:
                self.logger.info("Store tables already exist", prefix=self.schema.prefix)
                return False

            self.logger.info(
                "Installing store tables",
                prefix=self.schema.prefix,
                tables=[table.name for table in missing],
            )
            await conn.run_sync(self.schema.metadata.create_all, tables=missing)
            return True

    def get_job_queue(self) -> "JobQueue":
        from sqlqueue.queue import JobQueue

        return JobQueue(self, logger=self.logger)

    def get_monitoring_api(self) -> "QueueMonitoringApi":
        from sqlqueue.queue import QueueMonitoringApi

        return QueueMonitoringApi(self)

    def get_components(self) -> list["ExpirationManager | CountersAggregator"]:
        """Maintenance components the host scheduler runs repeatedly."""
        from sqlqueue.maintenance import CountersAggregator, ExpirationManager

        return [
            ExpirationManager(self, logger=self.logger),
            CountersAggregator(self, logger=self.logger),
        ]

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()
        self.logger.info("Database connection closed")

    def __repr__(self) -> str:
        return f"Storage(url={self.engine.url!r}, prefix={self.schema.prefix!r})"
