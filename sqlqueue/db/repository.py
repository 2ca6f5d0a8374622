"""
Storage repository for job and keyed-collection records.
Implements the write paths producers use alongside the work queue.
"""

from datetime import datetime, timedelta

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sqlqueue.db.models import Schema, utcnow
from sqlqueue.observability.logging import get_logger

logger = get_logger(__name__)


def _expiry(expire_in: timedelta | None) -> datetime | None:
    return utcnow() + expire_in if expire_in is not None else None


class StorageRepository:
    """
    Repository for record-level database operations.

    Bound to a caller-owned session; nothing here commits, so several
    writes (for example creating a job and enqueueing it) can share one
    transaction.
    """

    def __init__(self, session: AsyncSession, schema: Schema):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            schema: The store's table set.
        """
        self._session = session
        self._schema = schema

    async def create_job(self, expire_in: timedelta | None = None) -> int:
        """
        Create a job record.

        Args:
            expire_in: Optional time until the job expires.

        Returns:
            The new job id.
        """
        job = self._schema.job
        result = await self._session.execute(
            insert(job)
            .values(created_at=utcnow(), expire_at=_expiry(expire_in))
            .returning(job.c.id)
        )
        job_id = result.scalar_one()
        logger.debug("Created job", job_id=job_id)
        return job_id

    async def expire_job(self, job_id: int, expire_in: timedelta) -> bool:
        """
        Set a job's expiry, making it and its children eligible for sweeping.

        Returns:
            True if the job exists.
        """
        job = self._schema.job
        result = await self._session.execute(
            update(job).where(job.c.id == job_id).values(expire_at=_expiry(expire_in))
        )
        return result.rowcount > 0

    async def get_job_expire_at(self, job_id: int) -> datetime | None:
        job = self._schema.job
        result = await self._session.execute(
            select(job.c.expire_at).where(job.c.id == job_id)
        )
        return result.scalar_one_or_none()

    async def job_exists(self, job_id: int) -> bool:
        job = self._schema.job
        result = await self._session.execute(
            select(func.count()).select_from(job).where(job.c.id == job_id)
        )
        return (result.scalar() or 0) > 0

    async def set_job_parameter(self, job_id: int, name: str, value: str | None) -> None:
        """Insert or overwrite a named job parameter."""
        param = self._schema.job_parameter
        result = await self._session.execute(
            update(param)
            .where(and_(param.c.job_id == job_id, param.c.name == name))
            .values(value=value)
        )
        if result.rowcount == 0:
            await self._session.execute(
                insert(param).values(job_id=job_id, name=name, value=value)
            )

    async def add_job_state(
        self,
        job_id: int,
        name: str,
        reason: str | None = None,
    ) -> int:
        """Append a state history record for a job."""
        state = self._schema.job_state
        result = await self._session.execute(
            insert(state)
            .values(job_id=job_id, name=name, reason=reason, created_at=utcnow())
            .returning(state.c.id)
        )
        return result.scalar_one()

    async def increment_counter(
        self,
        key: str,
        value: int = 1,
        expire_in: timedelta | None = None,
    ) -> None:
        """
        Record one raw counter increment.

        Increments are appended, never updated in place; the aggregator
        folds them into the key's running total.
        """
        await self._session.execute(
            insert(self._schema.counter).values(
                key=key,
                value=value,
                expire_at=_expiry(expire_in),
            )
        )

    async def get_counter(self, key: str) -> int:
        """
        Current value of a counter: aggregated total plus pending increments.
        """
        counter = self._schema.counter
        aggregated = self._schema.aggregated_counter

        raw = await self._session.execute(
            select(func.coalesce(func.sum(counter.c.value), 0)).where(counter.c.key == key)
        )
        total = await self._session.execute(
            select(func.coalesce(func.sum(aggregated.c.value), 0)).where(
                aggregated.c.key == key
            )
        )
        return int(raw.scalar() or 0) + int(total.scalar() or 0)

    async def add_to_list(
        self,
        key: str,
        value: str,
        expire_in: timedelta | None = None,
    ) -> None:
        await self._session.execute(
            insert(self._schema.list).values(
                key=key, value=value, expire_at=_expiry(expire_in)
            )
        )

    async def add_to_set(
        self,
        key: str,
        value: str,
        score: float = 0.0,
        expire_in: timedelta | None = None,
    ) -> None:
        """Insert a set member, or update the score of an existing one."""
        set_table = self._schema.set
        result = await self._session.execute(
            update(set_table)
            .where(and_(set_table.c.key == key, set_table.c.value == value))
            .values(score=score, expire_at=_expiry(expire_in))
        )
        if result.rowcount == 0:
            await self._session.execute(
                insert(set_table).values(
                    key=key, value=value, score=score, expire_at=_expiry(expire_in)
                )
            )

    async def set_hash_field(
        self,
        key: str,
        field: str,
        value: str | None,
        expire_in: timedelta | None = None,
    ) -> None:
        hash_table = self._schema.hash
        result = await self._session.execute(
            update(hash_table)
            .where(and_(hash_table.c.key == key, hash_table.c.field == field))
            .values(value=value, expire_at=_expiry(expire_in))
        )
        if result.rowcount == 0:
            await self._session.execute(
                insert(hash_table).values(
                    key=key, field=field, value=value, expire_at=_expiry(expire_in)
                )
            )

    async def count_rows(self, table_name: str) -> int:
        """Number of rows in one of the store's tables."""
        table = self._schema.metadata.tables[f"{self._schema.prefix}{table_name}"]
        result = await self._session.execute(select(func.count()).select_from(table))
        return result.scalar() or 0
