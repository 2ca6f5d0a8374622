"""
Claimed queue entries.

A FetchedEntry owns the session its claim was made on until it is
disposed. Acknowledging deletes the entry; disposing without
acknowledging leaves it claimed until the invisibility timeout passes,
after which any consumer may claim it again.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import and_, delete, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from sqlqueue.db.models import utcnow

if TYPE_CHECKING:
    from sqlqueue.db.connection import Storage


@dataclass(frozen=True)
class QueueEntry:
    """A row of the job_queue table as seen by its claimant."""

    id: int
    job_id: str
    queue: str
    claimed_at: datetime | None
    claim_token: str | None


class FetchedEntry:
    """
    Handle to a claimed queue entry.

    Every mutation is conditional on the claim token, so a worker whose
    lease has already been taken over by another consumer cannot touch
    the new claim.
    """

    def __init__(
        self,
        storage: "Storage",
        session: AsyncSession,
        entry: QueueEntry,
        logger: structlog.stdlib.BoundLogger,
    ):
        self._storage = storage
        self._session: AsyncSession | None = session
        self._table = storage.schema.job_queue
        self._logger = logger
        self.entry = entry
        self._removed = False
        self._requeued = False

    @property
    def id(self) -> int:
        return self.entry.id

    @property
    def job_id(self) -> str:
        return self.entry.job_id

    @property
    def queue(self) -> str:
        return self.entry.queue

    @property
    def claim_token(self) -> str:
        return self.entry.claim_token or ""

    @property
    def is_disposed(self) -> bool:
        return self._session is None

    def _owned(self):
        return and_(
            self._table.c.id == self.entry.id,
            self._table.c.claim_token == self.entry.claim_token,
        )

    def _require_session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("Fetched entry has already been disposed")
        return self._session

    async def _apply(self, stmt) -> int:
        """Run one claim-scoped statement in its own transaction; rows affected."""
        session = self._require_session()
        try:
            result = await session.execute(stmt)
            await session.commit()
        except DBAPIError:
            await session.rollback()
            raise
        return result.rowcount

    async def remove_from_queue(self) -> bool:
        """
        Acknowledge the entry by deleting it.

        Returns:
            True if the entry was deleted, False if the claim was lost.
        """
        self._removed = await self._apply(delete(self._table).where(self._owned())) > 0
        if not self._removed:
            self._logger.warning(
                "Claim lost before acknowledgement",
                entry_id=self.entry.id,
                job_id=self.entry.job_id,
            )
        return self._removed

    async def requeue(self) -> bool:
        """
        Give the entry back so it can be claimed immediately.

        Returns:
            True if the claim was cleared, False if the claim was lost.
        """
        stmt = (
            update(self._table)
            .where(self._owned())
            .values(claimed_at=None, claim_token=None)
        )
        self._requeued = await self._apply(stmt) > 0
        return self._requeued

    async def renew(self) -> bool:
        """
        Extend the lease by restarting the invisibility window.

        Returns:
            True if the lease was extended, False if the claim was lost.
        """
        stmt = update(self._table).where(self._owned()).values(claimed_at=utcnow())
        return await self._apply(stmt) > 0

    async def dispose(self) -> None:
        """Close the session. The entry stays claimed until its lease expires."""
        session, self._session = self._session, None
        await self._storage.release_session(session)

    async def __aenter__(self) -> "FetchedEntry":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    def __repr__(self) -> str:
        return (
            f"FetchedEntry(id={self.entry.id}, job_id={self.entry.job_id}, "
            f"queue={self.entry.queue})"
        )
