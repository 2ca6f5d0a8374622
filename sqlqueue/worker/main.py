"""
Consumer process for queue entries.

The worker claims entries, hands each to a handler, and acknowledges it
on success or requeues it on failure. While the handler runs, a
heartbeat renews the lease so long-running work is not reclaimed.
"""

import asyncio
import signal
from collections.abc import Awaitable, Callable, Sequence

import structlog
from sqlalchemy.exc import DBAPIError

from sqlqueue.cancellation import wait_or_cancelled
from sqlqueue.constants import DEFAULT_QUEUE
from sqlqueue.db import Storage
from sqlqueue.exceptions import (
    ConnectivityError,
    LockTimeoutError,
    OperationCancelledError,
)
from sqlqueue.observability.logging import bind_context, get_logger, setup_logging
from sqlqueue.queue import FetchedEntry, JobQueue

EntryHandler = Callable[[FetchedEntry], Awaitable[None]]


class Worker:
    """
    Claim loop bound to a stop event.

    Features:
    - One claim at a time, each on its own session
    - Heartbeat lease renewal for long-running handlers
    - Graceful shutdown: the current entry finishes before exit
    """

    def __init__(
        self,
        storage: Storage,
        handler: EntryHandler,
        queues: Sequence[str] = (DEFAULT_QUEUE,),
        heartbeat_interval: float | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize the worker.

        Args:
            storage: Store to consume from.
            handler: Coroutine run for every claimed entry.
            queues: Queue names to claim from.
            heartbeat_interval: Seconds between lease renewals. Defaults to
                a third of the invisibility timeout.
            logger: Optional injected logger.
        """
        self.storage = storage
        self.handler = handler
        self.queues = list(queues)
        self.heartbeat_interval = (
            heartbeat_interval
            if heartbeat_interval is not None
            else storage.settings.invisibility_timeout_seconds / 3
        )
        self._logger = logger or get_logger(__name__)
        self._queue = JobQueue(storage, logger=self._logger)
        self._stop = asyncio.Event()
        self.processed = 0

    async def start(self) -> None:
        """Run the claim loop until stop() is called."""
        self._logger.info("Worker starting", queues=self.queues)
        self._stop.clear()

        while not self._stop.is_set():
            try:
                entry = await self._queue.dequeue(self.queues, self._stop)
            except OperationCancelledError:
                break
            except LockTimeoutError as e:
                self._logger.warning("Queue lock busy, retrying", error=str(e))
                continue
            except ConnectivityError:
                try:
                    await wait_or_cancelled(self._stop, self._queue.poll_interval)
                except OperationCancelledError:
                    break
                continue

            async with entry:
                await self._process(entry)

        self._logger.info("Worker stopped", processed=self.processed)

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        self._logger.info("Worker stopping")
        self._stop.set()

    async def _process(self, entry: FetchedEntry) -> None:
        """
        Run the handler, then acknowledge or requeue the entry.

        The heartbeat is stopped before the entry's session is used again.
        """
        done = asyncio.Event()
        heartbeat = asyncio.create_task(self._heartbeat(entry, done))
        error: Exception | None = None
        try:
            await self.handler(entry)
        except Exception as e:
            error = e
        finally:
            done.set()
            await heartbeat

        try:
            if error is not None:
                self._logger.error(
                    "Handler failed, requeueing entry",
                    entry_id=entry.id,
                    job_id=entry.job_id,
                    error=str(error),
                )
                await entry.requeue()
                return

            if await entry.remove_from_queue():
                self.processed += 1
                self._logger.info("Entry processed", entry_id=entry.id, job_id=entry.job_id)
        except DBAPIError as e:
            # The entry stays claimed and is picked up again once its lease expires
            self._logger.error(
                "Storage failure while settling entry",
                entry_id=entry.id,
                job_id=entry.job_id,
                error=str(e),
            )

    async def _heartbeat(self, entry: FetchedEntry, done: asyncio.Event) -> None:
        while True:
            try:
                await asyncio.wait_for(done.wait(), timeout=self.heartbeat_interval)
                return
            except TimeoutError:
                pass
            try:
                renewed = await entry.renew()
            except DBAPIError as e:
                self._logger.warning("Lease renewal failed", entry_id=entry.id, error=str(e))
                continue
            if not renewed:
                self._logger.warning("Lease lost while processing", entry_id=entry.id)
                return


async def log_entry(entry: FetchedEntry) -> None:
    """Default handler: record the claimed job id."""
    get_logger(__name__).info("Claimed job", job_id=entry.job_id, queue=entry.queue)


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging()
    storage = Storage()
    bind_context(component="worker")

    worker = Worker(storage, log_entry)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await storage.dispose()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
