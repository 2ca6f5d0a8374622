"""
Queue module.
Contains the work queue, claimed entry handles and inspection queries.
"""

from sqlqueue.queue.fetched import FetchedEntry, QueueEntry
from sqlqueue.queue.job_queue import JobQueue
from sqlqueue.queue.monitoring import QueueMonitoringApi

__all__ = ["JobQueue", "FetchedEntry", "QueueEntry", "QueueMonitoringApi"]
