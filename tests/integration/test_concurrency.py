"""
Integration tests for concurrent consumers.
"""

import asyncio

from sqlqueue.db import Storage
from sqlqueue.exceptions import OperationCancelledError
from sqlqueue.queue import JobQueue


class TestConcurrentDequeue:
    """Tests for claim exclusivity under concurrency."""

    async def test_concurrent_consumers_claim_distinct_entries(self, storage: Storage):
        """Test that N concurrent dequeues over N entries never share an entry."""
        queue = JobQueue(storage)
        count = 5
        for i in range(count):
            await queue.enqueue("default", f"J{i}")

        consumers = [JobQueue(storage) for _ in range(count)]
        entries = await asyncio.wait_for(
            asyncio.gather(*(consumer.dequeue(["default"]) for consumer in consumers)),
            timeout=30,
        )

        try:
            assert len({entry.id for entry in entries}) == count
            assert len({entry.claim_token for entry in entries}) == count
            assert {entry.job_id for entry in entries} == {f"J{i}" for i in range(count)}
        finally:
            for entry in entries:
                await entry.dispose()

    async def test_every_entry_processed_exactly_once(self, storage: Storage):
        queue = JobQueue(storage)
        total = 12
        for i in range(total):
            await queue.enqueue("default", f"J{i}")

        seen: list[str] = []
        stop = asyncio.Event()

        async def consume() -> None:
            consumer = JobQueue(storage)
            while len(seen) < total:
                try:
                    entry = await consumer.dequeue(["default"], stop)
                except OperationCancelledError:
                    return
                async with entry:
                    seen.append(entry.job_id)
                    await entry.remove_from_queue()
            stop.set()

        await asyncio.wait_for(asyncio.gather(*(consume() for _ in range(3))), timeout=60)

        assert sorted(seen) == sorted(f"J{i}" for i in range(total))
        assert await storage.get_monitoring_api().get_depth("default") == 0
