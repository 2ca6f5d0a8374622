"""
Exception types raised by the queue engine.
"""


class QueueError(Exception):
    """Base class for all queue engine errors."""


class LockTimeoutError(QueueError):
    """The distributed lock could not be obtained before the timeout."""

    def __init__(self, resource: str, timeout: float):
        super().__init__(
            f"Timeout expired while acquiring lock '{resource}' ({timeout:.2f}s)"
        )
        self.resource = resource
        self.timeout = timeout


class OperationCancelledError(QueueError):
    """Cooperative cancellation was observed at a suspension point."""


class ConnectivityError(QueueError):
    """A transient storage failure interrupted an operation."""
