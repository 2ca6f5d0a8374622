"""
Unit tests for queue inspection.
"""

from sqlqueue.db import Storage
from sqlqueue.queue import JobQueue, QueueMonitoringApi


class TestQueueMonitoringApi:
    """Tests for QueueMonitoringApi."""

    async def test_list_queue_names(self, storage: Storage):
        queue = JobQueue(storage)
        await queue.enqueue("emails", "J1")
        await queue.enqueue("default", "J2")
        await queue.enqueue("emails", "J3")

        names = await QueueMonitoringApi(storage).list_queue_names()

        assert names == ["default", "emails"]

    async def test_queue_names_are_cached(self, storage: Storage):
        """Test that a new queue stays invisible until the cache expires."""
        queue = JobQueue(storage)
        await queue.enqueue("default", "J1")

        cached = QueueMonitoringApi(storage, cache_ttl=60)
        assert await cached.list_queue_names() == ["default"]

        await queue.enqueue("reports", "J2")
        assert await cached.list_queue_names() == ["default"]

        fresh = QueueMonitoringApi(storage, cache_ttl=0)
        assert await fresh.list_queue_names() == ["default", "reports"]

    async def test_empty_cache_is_refreshed(self, storage: Storage):
        monitoring = QueueMonitoringApi(storage, cache_ttl=60)
        assert await monitoring.list_queue_names() == []

        await JobQueue(storage).enqueue("default", "J1")
        assert await monitoring.list_queue_names() == ["default"]

    async def test_enqueued_job_ids_window(self, storage: Storage):
        queue = JobQueue(storage)
        for i in range(5):
            await queue.enqueue("default", f"J{i}")
        await queue.enqueue("other", "X")

        monitoring = QueueMonitoringApi(storage)

        assert await monitoring.get_enqueued_job_ids("default") == [
            "J0", "J1", "J2", "J3", "J4",
        ]
        assert await monitoring.get_enqueued_job_ids("default", 1, 2) == ["J1", "J2"]
        assert await monitoring.get_enqueued_job_ids("default", 10, 2) == []
        assert isinstance(await monitoring.get_enqueued_job_ids("default"), list)

    async def test_depth_includes_claimed_entries(self, storage: Storage):
        queue = JobQueue(storage)
        await queue.enqueue("default", "J1")
        await queue.enqueue("default", "J2")

        monitoring = QueueMonitoringApi(storage)
        entry = await queue.dequeue(["default"])

        assert await monitoring.get_depth("default") == 2
        assert await monitoring.get_depth("missing") == 0

        await entry.remove_from_queue()
        await entry.dispose()
        assert await monitoring.get_depth("default") == 1
