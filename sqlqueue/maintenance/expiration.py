"""
Expiration sweeper.

Deletes expired rows in bounded batches, visiting tables children first
so no row is left pointing at a job that has already been removed.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import String, Table, cast, delete, select
from sqlalchemy.exc import DBAPIError

from sqlqueue.cancellation import throw_if_cancelled, wait_or_cancelled
from sqlqueue.constants import QUEUE_LOCK_RESOURCE, SPAN_EXPIRATION_SWEEP, ExpiryKind
from sqlqueue.db.lock import DistributedLock
from sqlqueue.db.models import Schema, utcnow
from sqlqueue.observability.logging import get_logger
from sqlqueue.observability.metrics import get_metrics
from sqlqueue.observability.tracing import start_span

if TYPE_CHECKING:
    from sqlqueue.db.connection import Storage


@dataclass(frozen=True)
class ExpirationTarget:
    """A table the sweeper visits and how it recognizes stale rows."""

    table: Table
    kind: ExpiryKind


def expiration_targets(schema: Schema) -> list[ExpirationTarget]:
    """Tables to sweep, in dependency order (children before jobs)."""
    return [
        ExpirationTarget(schema.job_parameter, ExpiryKind.PARENT_JOB),
        ExpirationTarget(schema.job_queue, ExpiryKind.PARENT_JOB),
        ExpirationTarget(schema.job_state, ExpiryKind.PARENT_JOB),
        ExpirationTarget(schema.aggregated_counter, ExpiryKind.DIRECT),
        ExpirationTarget(schema.list, ExpiryKind.DIRECT),
        ExpirationTarget(schema.set, ExpiryKind.DIRECT),
        ExpirationTarget(schema.hash, ExpiryKind.DIRECT),
        ExpirationTarget(schema.job, ExpiryKind.DIRECT),
    ]


class ExpirationManager:
    """
    Repeating maintenance task that removes expired records.

    Each batch runs under the queue's distributed lock, so sweeping never
    interleaves with a claim or with another sweeper. A storage failure
    on one table is logged and the pass moves on to the next table.
    """

    def __init__(
        self,
        storage: "Storage",
        check_interval: float | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize the sweeper.

        Args:
            storage: Store to sweep.
            check_interval: Seconds between passes.
            logger: Optional injected logger.
        """
        settings = storage.settings
        self._storage = storage
        self._schema = storage.schema
        self._logger = logger or get_logger(__name__)
        self._lock = DistributedLock(storage, logger=self._logger)
        self._metrics = get_metrics()
        self.check_interval = (
            check_interval
            if check_interval is not None
            else settings.job_expiration_check_interval_seconds
        )
        self.batch_size = settings.batch_size
        self.batch_delay = settings.expiration_batch_delay_seconds
        self.lock_timeout = settings.lock_timeout_seconds
        self.targets = expiration_targets(self._schema)

    async def execute(self, cancel: asyncio.Event | None = None) -> None:
        """Run one sweep, then wait out the check interval."""
        await self.sweep(cancel)
        await wait_or_cancelled(cancel, self.check_interval)

    async def sweep(self, cancel: asyncio.Event | None = None) -> dict[str, int]:
        """
        Visit every table once, deleting expired rows batch by batch.

        Args:
            cancel: Cancellation event checked between batches and tables.

        Returns:
            Rows removed per table name.
        """
        removed: dict[str, int] = {}
        # One cutoff for the whole pass so children and jobs agree on what expired
        now = utcnow()

        with start_span(SPAN_EXPIRATION_SWEEP, tables=len(self.targets)):
            for target in self.targets:
                throw_if_cancelled(cancel)
                name = target.table.name
                self._logger.debug("Removing outdated records", table=name)
                removed[name] = await self._sweep_table(target, now, cancel)

        return removed

    async def _sweep_table(
        self,
        target: ExpirationTarget,
        now: datetime,
        cancel: asyncio.Event | None,
    ) -> int:
        name = target.table.name
        total = 0

        while True:
            try:
                async with self._lock.hold(QUEUE_LOCK_RESOURCE, self.lock_timeout, cancel):
                    async with self._storage.session() as session:
                        result = await session.execute(self._delete_statement(target, now))
                        count = result.rowcount
            except DBAPIError as e:
                self._logger.error("Failed to remove outdated records", table=name, error=str(e))
                self._metrics.record_maintenance_error("expiration")
                return total

            total += count
            if count:
                self._metrics.record_expired(name, count)
                self._logger.debug("Removed outdated records", table=name, count=count)

            if count < self.batch_size:
                return total

            await wait_or_cancelled(cancel, self.batch_delay)

    def _delete_statement(self, target: ExpirationTarget, now: datetime):
        table = target.table
        job = self._schema.job

        if target.kind is ExpiryKind.DIRECT:
            batch = (
                select(table.c.id)
                .where(table.c.expire_at < now)
                .limit(self.batch_size)
            )
        else:
            # Queue entries reference jobs by their textual id
            parent_id = job.c.id
            if isinstance(table.c.job_id.type, String):
                parent_id = cast(job.c.id, String)
            batch = (
                select(table.c.id)
                .join(job, table.c.job_id == parent_id)
                .where(job.c.expire_at < now)
                .limit(self.batch_size)
            )

        return delete(table).where(table.c.id.in_(batch))

    def __repr__(self) -> str:
        return f"ExpirationManager(interval={self.check_interval}s)"
