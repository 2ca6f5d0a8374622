"""
Background processing server.

Hosts the store's maintenance components (expiration sweeper and counter
aggregator), invoking each one repeatedly with a shared stop event until
shutdown is requested.
"""

import asyncio
import signal
from typing import Protocol

import structlog

from sqlqueue.cancellation import wait_or_cancelled
from sqlqueue.db import Storage
from sqlqueue.exceptions import OperationCancelledError
from sqlqueue.observability.logging import bind_context, get_logger, setup_logging
from sqlqueue.observability.metrics import get_metrics


class BackgroundComponent(Protocol):
    async def execute(self, cancel: asyncio.Event | None = None) -> None: ...


class BackgroundServer:
    """
    Runs maintenance components as independent repeating tasks.

    A failing pass is logged and retried after a delay; only a
    cancellation ends a component's loop.
    """

    def __init__(
        self,
        storage: Storage,
        components: list[BackgroundComponent] | None = None,
        retry_delay: float | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize the server.

        Args:
            storage: Store the components work against.
            components: Components to run. Defaults to the store's own.
            retry_delay: Seconds to wait after a failed pass.
            logger: Optional injected logger.
        """
        self.storage = storage
        self.components = (
            components if components is not None else storage.get_components()
        )
        self.retry_delay = (
            retry_delay
            if retry_delay is not None
            else storage.settings.server_retry_delay_seconds
        )
        self._logger = logger or get_logger(__name__)
        self._stop = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def start(self) -> None:
        """Run every component until stop() is called."""
        self._logger.info(
            "Background server starting",
            components=[repr(component) for component in self.components],
        )
        self._stop.clear()

        await asyncio.gather(
            *(self._run_component(component) for component in self.components)
        )

        self._logger.info("Background server stopped")

    async def stop(self) -> None:
        """Request shutdown; running passes finish their current batch."""
        self._logger.info("Background server stopping")
        self._stop.set()

    async def _run_component(self, component: BackgroundComponent) -> None:
        name = repr(component)
        while not self._stop.is_set():
            try:
                await component.execute(self._stop)
            except OperationCancelledError:
                break
            except Exception as e:
                self._logger.exception("Error in background component", component=name, error=str(e))
                self._metrics.record_maintenance_error(type(component).__name__)
                try:
                    await wait_or_cancelled(self._stop, self.retry_delay)
                except OperationCancelledError:
                    break

        self._logger.info("Background component stopped", component=name)


async def run_async() -> None:
    """Run the background server asynchronously."""
    setup_logging()
    storage = Storage()
    bind_context(component="server")
    await storage.install()

    server = BackgroundServer(storage)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(server.stop())
        )

    try:
        await server.start()
    finally:
        await storage.dispose()


def run() -> None:
    """Run the background server."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
