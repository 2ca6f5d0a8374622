"""
Storage-backed distributed lock.

A held lock is a row in the distributed_lock table keyed by resource
name. Acquiring inserts the row and retries on a unique-key conflict
until the timeout elapses; releasing deletes it. Because the row lives
in shared storage, the lock excludes holders in other processes and on
other hosts.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from sqlalchemy import and_, delete, insert
from sqlalchemy.exc import DBAPIError, IntegrityError

from sqlqueue.cancellation import throw_if_cancelled, wait_or_cancelled
from sqlqueue.db.models import utcnow
from sqlqueue.exceptions import LockTimeoutError
from sqlqueue.observability.logging import get_logger
from sqlqueue.observability.metrics import get_metrics

if TYPE_CHECKING:
    from sqlqueue.db.connection import Storage


class LockHandle:
    """
    Ownership of one acquired resource.

    ``release`` is idempotent and only ever deletes the row this handle
    inserted, so a handle whose row was superseded cannot free a
    successor's lock.
    """

    def __init__(self, lock: "DistributedLock", resource: str, owner: str):
        self._lock = lock
        self.resource = resource
        self.owner = owner
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        if self._released:
            return
        await self._lock._delete(self.resource, self.owner)
        self._released = True


class DistributedLock:
    """
    Named mutual exclusion across processes sharing one store.

    Not reentrant: acquiring a resource already held on the same logical
    path waits for itself and times out.
    """

    def __init__(
        self,
        storage: "Storage",
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize the lock.

        Args:
            storage: Store that holds the lock rows.
            logger: Optional injected logger.
        """
        self._storage = storage
        self._table = storage.schema.distributed_lock
        self._poll_interval = storage.settings.lock_poll_interval_seconds
        self._expiration = timedelta(seconds=storage.settings.lock_expiration_seconds)
        self._logger = logger or get_logger(__name__)
        self._metrics = get_metrics()

    async def try_acquire(self, resource: str) -> LockHandle | None:
        """
        Make a single attempt to take the lock.

        A row older than the lock expiration window was left by a crashed
        holder and is removed before inserting.

        Args:
            resource: Lock resource name.

        Returns:
            A handle if the lock was taken, None if it is held elsewhere.
        """
        owner = str(uuid4())
        now = utcnow()
        async with self._storage.open_session() as session:
            try:
                stale = await session.execute(
                    delete(self._table).where(
                        and_(
                            self._table.c.resource == resource,
                            self._table.c.acquired_at < now - self._expiration,
                        )
                    )
                )
                if stale.rowcount:
                    self._logger.warning(
                        "Superseded abandoned lock", resource=resource
                    )
                await session.execute(
                    insert(self._table).values(
                        resource=resource,
                        owner=owner,
                        acquired_at=now,
                    )
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return None
        return LockHandle(self, resource, owner)

    async def acquire(
        self,
        resource: str,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> LockHandle:
        """
        Take the lock, polling until it is free or the timeout elapses.

        Args:
            resource: Lock resource name.
            timeout: Maximum seconds to wait. Defaults to lock_timeout_seconds.
            cancel: Cancellation event observed between attempts.

        Returns:
            LockHandle: Handle whose release frees the lock.

        Raises:
            LockTimeoutError: If the lock was not obtained in time.
            OperationCancelledError: If cancellation was requested while waiting.
        """
        if timeout is None:
            timeout = self._storage.settings.lock_timeout_seconds

        started = time.monotonic()
        deadline = started + timeout

        while True:
            throw_if_cancelled(cancel)
            handle = await self.try_acquire(resource)
            if handle is not None:
                self._metrics.record_lock_wait(resource, time.monotonic() - started)
                return handle

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._metrics.record_lock_timeout(resource)
                self._logger.warning(
                    "Timed out acquiring lock", resource=resource, timeout=timeout
                )
                raise LockTimeoutError(resource, timeout)

            await wait_or_cancelled(cancel, min(self._poll_interval, remaining))

    @asynccontextmanager
    async def hold(
        self,
        resource: str,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncGenerator[LockHandle]:
        """
        Hold the lock for the duration of the block.
        Released on every exit path, including errors and cancellation.
        """
        handle = await self.acquire(resource, timeout, cancel)
        try:
            yield handle
        finally:
            try:
                await asyncio.shield(handle.release())
            except DBAPIError as e:
                # The row is superseded once lock_expiration_seconds pass
                self._logger.error(
                    "Failed to release lock", resource=resource, error=str(e)
                )

    async def _delete(self, resource: str, owner: str) -> None:
        async with self._storage.session() as session:
            await session.execute(
                delete(self._table).where(
                    and_(
                        self._table.c.resource == resource,
                        self._table.c.owner == owner,
                    )
                )
            )
