"""
Persistent work queue with lease-based claims.

Consumers claim an entry with a single bounded conditional update that
stamps it with ``claimed_at`` and a fresh claim token, then read it back
by that token. A claim older than the invisibility timeout is eligible
to be claimed again, which is how entries held by crashed workers are
recovered.
"""

import asyncio
from collections.abc import Iterable
from datetime import timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from sqlalchemy import and_, insert, or_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from sqlqueue.cancellation import throw_if_cancelled, wait_or_cancelled
from sqlqueue.constants import QUEUE_LOCK_RESOURCE, SPAN_DEQUEUE
from sqlqueue.db.lock import DistributedLock
from sqlqueue.db.models import utcnow
from sqlqueue.exceptions import ConnectivityError
from sqlqueue.observability.logging import get_logger
from sqlqueue.observability.metrics import get_metrics
from sqlqueue.observability.tracing import start_span
from sqlqueue.queue.fetched import FetchedEntry, QueueEntry

if TYPE_CHECKING:
    from sqlqueue.db.connection import Storage


class JobQueue:
    """
    Enqueue and claim operations against the job_queue table.

    Implements:
    - Enqueue as a plain append (duplicates are allowed)
    - Dequeue as lock-guarded, token-correlated single-row claims
    - Lease expiry through the invisibility timeout
    """

    def __init__(
        self,
        storage: "Storage",
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize the queue.

        Args:
            storage: Store holding the queue table.
            logger: Optional injected logger.
        """
        settings = storage.settings
        self._storage = storage
        self._table = storage.schema.job_queue
        self._logger = logger or get_logger(__name__)
        self._lock = DistributedLock(storage, logger=self._logger)
        self._metrics = get_metrics()
        self.poll_interval = settings.queue_poll_interval_seconds
        self.invisibility_timeout = timedelta(
            seconds=settings.invisibility_timeout_seconds
        )
        self.lock_timeout = settings.lock_timeout_seconds

    async def enqueue(
        self,
        queue: str,
        job_id: str,
        session: AsyncSession | None = None,
    ) -> int:
        """
        Append an entry to a queue.

        Args:
            queue: Queue name.
            job_id: Identifier of the job to run.
            session: Optional caller session. The insert then joins the
                caller's transaction and the caller commits.

        Returns:
            The id of the new entry.
        """
        stmt = (
            insert(self._table)
            .values(job_id=str(job_id), queue=queue)
            .returning(self._table.c.id)
        )

        if session is not None:
            entry_id = (await session.execute(stmt)).scalar_one()
        else:
            async with self._storage.session() as own_session:
                entry_id = (await own_session.execute(stmt)).scalar_one()

        self._logger.debug("Enqueued entry", queue=queue, job_id=job_id, entry_id=entry_id)
        self._metrics.record_enqueued(queue)
        return entry_id

    async def dequeue(
        self,
        queues: Iterable[str],
        cancel: asyncio.Event | None = None,
    ) -> FetchedEntry:
        """
        Claim the oldest claimable entry from any of the given queues.

        Blocks, polling every ``queue_poll_interval_seconds``, until an
        entry is available or cancellation is requested.

        Args:
            queues: Non-empty collection of queue names.
            cancel: Cancellation event observed at every wait.

        Returns:
            FetchedEntry: Handle bound to the claim's own session.

        Raises:
            ValueError: If no queue names were given.
            OperationCancelledError: If cancellation was requested.
            LockTimeoutError: If the queue lock could not be obtained.
            ConnectivityError: If the store failed during the claim.
        """
        queue_names = list(queues)
        if not queue_names:
            raise ValueError("Queue list must be non-empty.")

        with start_span(SPAN_DEQUEUE, queues=queue_names) as span:

            while True:
                throw_if_cancelled(cancel)
                session = self._storage.open_session()

                try:
                    async with self._lock.hold(
                        QUEUE_LOCK_RESOURCE, self.lock_timeout, cancel
                    ):
                        entry = await self._try_claim(session, queue_names)
                except DBAPIError as e:
                    self._logger.error(
                        "Storage failure while claiming an entry",
                        queues=queue_names,
                        error=str(e),
                    )
                    await self._storage.release_session(session)
                    raise ConnectivityError(str(e)) from e
                except BaseException:
                    await self._storage.release_session(session)
                    raise

                if entry is not None:
                    span.set_attribute("entry_id", entry.id)
                    self._metrics.record_claimed(entry.queue)
                    self._logger.debug(
                        "Claimed entry",
                        entry_id=entry.id,
                        job_id=entry.job_id,
                        queue=entry.queue,
                    )
                    return FetchedEntry(self._storage, session, entry, self._logger)

                await self._storage.release_session(session)
                self._metrics.record_empty_poll()
                await wait_or_cancelled(cancel, self.poll_interval)

    async def _try_claim(
        self,
        session: AsyncSession,
        queues: list[str],
    ) -> QueueEntry | None:
        """
        Claim at most one entry and read it back by its token.

        The target row is chosen with FOR UPDATE SKIP LOCKED where the
        dialect supports it; on SQLite the write lock serializes claims.
        """
        table = self._table
        token = str(uuid4())
        now = utcnow()

        candidate = (
            select(table.c.id)
            .where(
                and_(
                    table.c.queue.in_(queues),
                    or_(
                        table.c.claimed_at.is_(None),
                        table.c.claimed_at <= now - self.invisibility_timeout,
                    ),
                )
            )
            .order_by(table.c.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        result = await session.execute(
            update(table)
            .where(table.c.id == candidate)
            .values(claimed_at=now, claim_token=token)
        )

        if result.rowcount == 0:
            await session.commit()
            return None

        row = (
            await session.execute(
                select(
                    table.c.id,
                    table.c.job_id,
                    table.c.queue,
                    table.c.claimed_at,
                    table.c.claim_token,
                ).where(table.c.claim_token == token)
            )
        ).one()
        await session.commit()

        return QueueEntry(
            id=row.id,
            job_id=row.job_id,
            queue=row.queue,
            claimed_at=row.claimed_at,
            claim_token=row.claim_token,
        )
