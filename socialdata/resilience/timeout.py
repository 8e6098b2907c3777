"""Deadline race for remote operations.

Provides:
- Racing an awaitable against a hard deadline
- A synthetic DeadlineExceeded failure when the timer wins
- Per-call-site timeout presets

The operation is NOT cancelled when the deadline passes. Backend clients
generally cannot abort a request already on the wire, so the underlying work
may still complete after the caller has given up; its result is discarded.
Callers must not assume cancellation.
"""

import asyncio
import logging
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


class DeadlineExceeded(Exception):
    """Raised when an operation loses the race against its deadline."""

    def __init__(self, message: str = "", timeout: float = 0.0):
        super().__init__(message)
        self.timeout = timeout


# Pre-configured timeouts (milliseconds)
QUERY_TIMEOUT_MS = 15000
MUTATION_TIMEOUT_MS = 30000
HEALTH_CHECK_TIMEOUT_MS = 5000


def _discard_result(task: "asyncio.Future[Any]") -> None:
    """Retrieve an abandoned task's outcome so it is never reported as unhandled."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Abandoned operation finished after deadline with {error!r}")
    else:
        logger.debug("Abandoned operation finished after deadline; result discarded")


async def race_deadline(
    operation: Awaitable[Any],
    timeout_seconds: float,
    error_message: str = "Operation timed out",
) -> Any:
    """Await an operation, giving up once the deadline passes.

    Args:
        operation: Awaitable to run
        timeout_seconds: Hard deadline in seconds
        error_message: Message for the timeout error

    Returns:
        The operation's result

    Raises:
        DeadlineExceeded: If the deadline passes first
        Exception: Whatever the operation raises
    """
    task = asyncio.ensure_future(operation)
    done, _ = await asyncio.wait({task}, timeout=timeout_seconds)

    if task in done:
        return task.result()

    # Leave the task running; only stop observing it.
    task.add_done_callback(_discard_result)
    logger.warning(f"{error_message} after {timeout_seconds}s")
    raise DeadlineExceeded(f"{error_message} after {timeout_seconds}s", timeout_seconds)
