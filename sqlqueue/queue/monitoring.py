"""
Read-only queue inspection.
"""

import asyncio
import time
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from sqlqueue.constants import QUEUE_NAMES_CACHE_TTL_SECONDS
from sqlqueue.observability.metrics import get_metrics

if TYPE_CHECKING:
    from sqlqueue.db.connection import Storage


class QueueMonitoringApi:
    """
    Queue depth and membership queries for dashboards and tests.

    Queue names are cached for a few seconds so frequent dashboard polling
    does not turn into a DISTINCT scan per request. Claim state is not
    exposed.
    """

    def __init__(
        self,
        storage: "Storage",
        cache_ttl: float = QUEUE_NAMES_CACHE_TTL_SECONDS,
    ):
        self._storage = storage
        self._table = storage.schema.job_queue
        self._cache_ttl = cache_ttl
        self._cache_lock = asyncio.Lock()
        self._queues_cache: list[str] = []
        self._cache_updated = 0.0
        self._metrics = get_metrics()

    async def list_queue_names(self) -> list[str]:
        """
        Get the distinct queue names that currently hold entries.

        Returns:
            Queue names, possibly up to ``cache_ttl`` seconds stale.
        """
        async with self._cache_lock:
            expired = time.monotonic() - self._cache_updated >= self._cache_ttl
            if not self._queues_cache or expired:
                async with self._storage.session() as session:
                    result = await session.execute(
                        select(self._table.c.queue)
                        .distinct()
                        .order_by(self._table.c.queue)
                    )
                    self._queues_cache = list(result.scalars().all())
                self._cache_updated = time.monotonic()

            return list(self._queues_cache)

    async def get_enqueued_job_ids(
        self,
        queue: str,
        offset: int = 0,
        limit: int = 20,
    ) -> list[str]:
        """
        Get a window of job ids in insertion order.

        Args:
            queue: Queue name.
            offset: Number of entries to skip.
            limit: Maximum number of ids to return.

        Returns:
            Job ids ordered by entry id.
        """
        stmt = (
            select(self._table.c.job_id)
            .where(self._table.c.queue == queue)
            .order_by(self._table.c.id)
            .offset(offset)
            .limit(limit)
        )
        async with self._storage.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_depth(self, queue: str) -> int:
        """
        Get the number of entries in a queue, claimed or not.

        Args:
            queue: Queue name.

        Returns:
            Number of entries.
        """
        stmt = (
            select(func.count())
            .select_from(self._table)
            .where(self._table.c.queue == queue)
        )
        async with self._storage.session() as session:
            result = await session.execute(stmt)
            depth = result.scalar() or 0

        self._metrics.update_queue_depth(queue, depth)
        return depth
