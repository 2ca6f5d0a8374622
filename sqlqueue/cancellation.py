"""
Cooperative cancellation helpers.

Blocking waits in the claim loop and the maintenance tasks take an
optional ``asyncio.Event``. Setting the event wakes every pending wait,
which then raises ``OperationCancelledError``.
"""

import asyncio

from sqlqueue.exceptions import OperationCancelledError


def throw_if_cancelled(cancel: asyncio.Event | None) -> None:
    """Raise if cancellation has been requested."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation was cancelled")


async def wait_or_cancelled(cancel: asyncio.Event | None, seconds: float) -> None:
    """
    Wait up to ``seconds``, returning early when ``cancel`` is set.

    Args:
        cancel: Cancellation event, or None for an uninterruptible sleep.
        seconds: Maximum time to wait.

    Raises:
        OperationCancelledError: If cancellation was requested before or
            during the wait.
    """
    if cancel is None:
        await asyncio.sleep(seconds)
        return

    throw_if_cancelled(cancel)
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except TimeoutError:
        pass
    throw_if_cancelled(cancel)
