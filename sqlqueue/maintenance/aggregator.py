"""
Counter aggregation.

Raw counter rows (one per increment) are folded into one aggregated row
per key. Each batch runs in a single transaction: the raw rows are
deleted with RETURNING, summed, and merged into the aggregates before
commit, so an increment is never lost and never counted twice.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from sqlqueue.cancellation import wait_or_cancelled
from sqlqueue.constants import SPAN_AGGREGATE_COUNTERS
from sqlqueue.observability.logging import get_logger
from sqlqueue.observability.metrics import get_metrics
from sqlqueue.observability.tracing import start_span

if TYPE_CHECKING:
    from sqlqueue.db.connection import Storage


def later(first: datetime | None, second: datetime | None) -> datetime | None:
    """
    The later of two raw increment expiries, ignoring missing values.

    Folds the increments of one batch, the way SQL MAX skips NULLs.
    """
    if first is None:
        return second
    if second is None:
        return first
    return max(first, second)


def merged_expiry(
    existing: datetime | None, incoming: datetime | None
) -> datetime | None:
    """
    Expiry of an aggregate after a batch is folded into it.

    None means the counter never expires, which outlasts any date, so a
    permanent aggregate stays permanent and a permanent batch makes the
    aggregate permanent.
    """
    if existing is None or incoming is None:
        return None
    return max(existing, incoming)


class CountersAggregator:
    """
    Repeating maintenance task that merges raw counters into totals.

    While batches come back full, the next one follows after a short
    delay; once a batch is short the task waits the full interval.
    """

    def __init__(
        self,
        storage: "Storage",
        interval: float | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize the aggregator.

        Args:
            storage: Store holding the counter tables.
            interval: Seconds between passes.
            logger: Optional injected logger.
        """
        settings = storage.settings
        self._storage = storage
        self._counter = storage.schema.counter
        self._aggregated = storage.schema.aggregated_counter
        self._logger = logger or get_logger(__name__)
        self._metrics = get_metrics()
        self.interval = (
            interval
            if interval is not None
            else settings.counters_aggregate_interval_seconds
        )
        self.batch_size = settings.batch_size
        self.batch_delay = settings.aggregation_batch_delay_seconds

    async def execute(self, cancel: asyncio.Event | None = None) -> None:
        """Aggregate until the raw table drains, then wait out the interval."""
        self._logger.debug("Aggregating records in counter table")

        with start_span(SPAN_AGGREGATE_COUNTERS, batch_size=self.batch_size):
            while True:
                try:
                    removed = await self.aggregate_batch()
                except DBAPIError as e:
                    self._logger.error("Failed to aggregate counters", error=str(e))
                    self._metrics.record_maintenance_error("aggregation")
                    break

                if removed < self.batch_size:
                    break
                await wait_or_cancelled(cancel, self.batch_delay)

        await wait_or_cancelled(cancel, self.interval)

    async def aggregate_batch(self) -> int:
        """
        Fold one batch of raw counters into the aggregates atomically.

        Returns:
            Number of raw counter rows consumed.
        """
        counter = self._counter
        batch = (
            select(counter.c.id)
            .order_by(counter.c.id)
            .limit(self.batch_size)
            .with_for_update(skip_locked=True)
        )

        async with self._storage.session() as session:
            result = await session.execute(
                delete(counter)
                .where(counter.c.id.in_(batch))
                .returning(counter.c.key, counter.c.value, counter.c.expire_at)
            )
            rows = result.all()
            if not rows:
                return 0

            totals: dict[str, int] = defaultdict(int)
            expiries: dict[str, datetime | None] = {}
            for key, value, expire_at in rows:
                totals[key] += value
                expiries[key] = later(expiries.get(key), expire_at)

            await self._merge(session, totals, expiries)

        self._metrics.record_aggregated(len(rows))
        self._logger.debug("Aggregated counters", rows=len(rows), keys=len(totals))
        return len(rows)

    async def _merge(
        self,
        session: AsyncSession,
        totals: dict[str, int],
        expiries: dict[str, datetime | None],
    ) -> None:
        aggregated = self._aggregated
        existing = {
            row.key: row.expire_at
            for row in (
                await session.execute(
                    select(aggregated.c.key, aggregated.c.expire_at)
                    .where(aggregated.c.key.in_(list(totals)))
                    .with_for_update()
                )
            ).all()
        }

        for key, total in totals.items():
            if key in existing:
                await session.execute(
                    update(aggregated)
                    .where(aggregated.c.key == key)
                    .values(
                        value=aggregated.c.value + total,
                        expire_at=merged_expiry(existing[key], expiries[key]),
                    )
                )
            else:
                await session.execute(
                    insert(aggregated).values(
                        key=key,
                        value=total,
                        expire_at=expiries[key],
                    )
                )

    def __repr__(self) -> str:
        return f"CountersAggregator(interval={self.interval}s)"
