"""
Unit tests for the lease-based job queue.
"""

import asyncio

import pytest
from sqlalchemy import select

from sqlqueue.db import Storage, StorageRepository
from sqlqueue.exceptions import OperationCancelledError
from sqlqueue.queue import FetchedEntry, JobQueue


def cancel_after(seconds: float) -> asyncio.Event:
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(seconds, cancel.set)
    return cancel


async def queue_row(storage: Storage, entry_id: int):
    table = storage.schema.job_queue
    async with storage.session() as session:
        result = await session.execute(select(table).where(table.c.id == entry_id))
        return result.one_or_none()


class TestEnqueue:
    """Tests for JobQueue.enqueue."""

    async def test_enqueue_returns_entry_id(self, storage: Storage):
        queue = JobQueue(storage)

        first = await queue.enqueue("default", "J1")
        second = await queue.enqueue("default", "J2")

        assert second > first
        row = await queue_row(storage, first)
        assert row.job_id == "J1"
        assert row.queue == "default"
        assert row.claimed_at is None
        assert row.claim_token is None

    async def test_duplicate_enqueue_creates_two_entries(self, storage: Storage):
        queue = JobQueue(storage)

        first = await queue.enqueue("default", "J1")
        second = await queue.enqueue("default", "J1")

        assert first != second
        assert await storage.get_monitoring_api().get_depth("default") == 2

    async def test_enqueue_joins_caller_transaction(self, storage: Storage):
        """Test that a rolled back caller transaction leaves no entry."""
        queue = JobQueue(storage)

        with pytest.raises(RuntimeError):
            async with storage.session() as session:
                repo = StorageRepository(session, storage.schema)
                job_id = await repo.create_job()
                await queue.enqueue("default", str(job_id), session=session)
                raise RuntimeError("abort")

        assert await storage.get_monitoring_api().get_depth("default") == 0

    async def test_enqueue_with_job_in_one_transaction(self, storage: Storage):
        queue = JobQueue(storage)

        async with storage.session() as session:
            repo = StorageRepository(session, storage.schema)
            job_id = await repo.create_job()
            await queue.enqueue("default", str(job_id), session=session)

        entry = await queue.dequeue(["default"])
        async with entry:
            assert entry.job_id == str(job_id)


class TestDequeue:
    """Tests for JobQueue.dequeue."""

    async def test_claims_single_entry(self, storage: Storage):
        queue = JobQueue(storage)
        entry_id = await queue.enqueue("default", "J1")

        entry = await queue.dequeue(["default"])

        assert isinstance(entry, FetchedEntry)
        assert entry.id == entry_id
        assert entry.job_id == "J1"
        assert entry.queue == "default"
        row = await queue_row(storage, entry_id)
        assert row.claimed_at is not None
        assert row.claim_token == entry.claim_token
        await entry.dispose()

    async def test_empty_queue_list_rejected(self, storage: Storage):
        with pytest.raises(ValueError):
            await JobQueue(storage).dequeue([])

    async def test_insertion_order(self, storage: Storage):
        queue = JobQueue(storage)
        for job_id in ("J1", "J2", "J3"):
            await queue.enqueue("default", job_id)

        claimed = []
        for _ in range(3):
            entry = await queue.dequeue(["default"])
            claimed.append(entry.job_id)
            await entry.remove_from_queue()
            await entry.dispose()

        assert claimed == ["J1", "J2", "J3"]

    async def test_claims_from_any_listed_queue(self, storage: Storage):
        queue = JobQueue(storage)
        await queue.enqueue("critical", "C1")
        await queue.enqueue("default", "D1")
        await queue.enqueue("other", "O1")

        first = await queue.dequeue(["default", "critical"])
        second = await queue.dequeue(["default", "critical"])

        assert {first.job_id, second.job_id} == {"C1", "D1"}
        with pytest.raises(OperationCancelledError):
            await queue.dequeue(["default", "critical"], cancel_after(0.1))

        await first.dispose()
        await second.dispose()

    async def test_claimed_entry_is_invisible(self, storage: Storage):
        """Test that a second consumer blocks while the only entry is leased."""
        queue = JobQueue(storage)
        await queue.enqueue("default", "J1")
        entry = await queue.dequeue(["default"])

        with pytest.raises(OperationCancelledError):
            await queue.dequeue(["default"], cancel_after(0.2))

        await entry.dispose()

    async def test_blocked_dequeue_wakes_on_enqueue(self, storage: Storage):
        queue = JobQueue(storage)
        waiter = asyncio.create_task(queue.dequeue(["default"]))
        await asyncio.sleep(0.1)
        assert not waiter.done()

        await queue.enqueue("default", "J1")
        entry = await asyncio.wait_for(waiter, timeout=5)

        assert entry.job_id == "J1"
        await entry.dispose()

    async def test_cancel_before_dequeue(self, storage: Storage):
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            await JobQueue(storage).dequeue(["default"], cancel)

    async def test_expired_lease_is_reclaimed(self, storage: Storage, age_claim):
        """Test that an abandoned claim becomes claimable after the timeout."""
        queue = JobQueue(storage)
        entry_id = await queue.enqueue("default", "J1")

        abandoned = await queue.dequeue(["default"])
        await abandoned.dispose()
        await age_claim(entry_id, storage.settings.invisibility_timeout_seconds + 1)

        reclaimed = await queue.dequeue(["default"])

        assert reclaimed.id == entry_id
        assert reclaimed.claim_token != abandoned.claim_token
        await reclaimed.dispose()

    async def test_stale_claimant_cannot_acknowledge(self, storage: Storage, age_claim):
        queue = JobQueue(storage)
        entry_id = await queue.enqueue("default", "J1")

        stale = await queue.dequeue(["default"])
        await age_claim(entry_id, storage.settings.invisibility_timeout_seconds + 1)
        current = await queue.dequeue(["default"])

        assert await stale.remove_from_queue() is False
        assert await stale.requeue() is False
        assert await queue_row(storage, entry_id) is not None

        assert await current.remove_from_queue() is True
        assert await queue_row(storage, entry_id) is None

        await stale.dispose()
        await current.dispose()

    async def test_recent_claim_is_not_reclaimed(self, storage: Storage, age_claim):
        queue = JobQueue(storage)
        entry_id = await queue.enqueue("default", "J1")
        entry = await queue.dequeue(["default"])
        await age_claim(entry_id, storage.settings.invisibility_timeout_seconds - 10)

        with pytest.raises(OperationCancelledError):
            await queue.dequeue(["default"], cancel_after(0.1))

        await entry.dispose()


class TestFetchedEntry:
    """Tests for FetchedEntry."""

    async def test_remove_from_queue(self, storage: Storage):
        queue = JobQueue(storage)
        entry_id = await queue.enqueue("default", "J1")

        async with await queue.dequeue(["default"]) as entry:
            assert await entry.remove_from_queue() is True

        assert entry.is_disposed
        assert await queue_row(storage, entry_id) is None

    async def test_requeue_makes_entry_claimable(self, storage: Storage):
        queue = JobQueue(storage)
        entry_id = await queue.enqueue("default", "J1")

        async with await queue.dequeue(["default"]) as entry:
            assert await entry.requeue() is True

        row = await queue_row(storage, entry_id)
        assert row.claimed_at is None
        assert row.claim_token is None

        again = await queue.dequeue(["default"])
        assert again.id == entry_id
        await again.dispose()

    async def test_renew_extends_lease(self, storage: Storage, age_claim):
        queue = JobQueue(storage)
        entry_id = await queue.enqueue("default", "J1")
        entry = await queue.dequeue(["default"])

        await age_claim(entry_id, storage.settings.invisibility_timeout_seconds - 1)
        assert await entry.renew() is True

        with pytest.raises(OperationCancelledError):
            await queue.dequeue(["default"], cancel_after(0.1))
        await entry.dispose()

    async def test_dispose_leaves_entry_claimed(self, storage: Storage):
        queue = JobQueue(storage)
        entry_id = await queue.enqueue("default", "J1")

        entry = await queue.dequeue(["default"])
        await entry.dispose()
        await entry.dispose()

        row = await queue_row(storage, entry_id)
        assert row.claim_token == entry.claim_token

    async def test_use_after_dispose(self, storage: Storage):
        queue = JobQueue(storage)
        await queue.enqueue("default", "J1")

        entry = await queue.dequeue(["default"])
        await entry.dispose()

        with pytest.raises(RuntimeError):
            await entry.remove_from_queue()
