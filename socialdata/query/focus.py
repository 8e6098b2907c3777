"""Debounced focus/visibility regain handling.

Coalesces bursts of regain signals into one callback per quiet window,
then waits a random extra delay so many queries regaining focus together
do not all hit the backend at once.
"""

import asyncio
import inspect
import logging
import random
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class FocusDebouncer:
    """Trailing-edge debouncer for regain signals.

    Usage:
        debouncer = FocusDebouncer(controller.refetch, window_s=1.0, jitter_s=2.0)
        debouncer.trigger()  # on focus
        debouncer.trigger()  # on visibilitychange, coalesced
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        window_s: float = 1.0,
        jitter_s: float = 2.0,
        rng: Optional[random.Random] = None,
    ):
        """Initialize debouncer.

        Args:
            callback: Called (and awaited if async) once per window
            window_s: Quiet period that must pass after the last signal
            jitter_s: Upper bound of the random extra delay
            rng: Random source for the extra delay
        """
        self._callback = callback
        self.window_s = window_s
        self.jitter_s = jitter_s
        self._rng = rng or random.Random()
        self._deadline = 0.0
        self._task: Optional[asyncio.Task] = None
        self.fired = 0

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        """Record a regain signal. Must be called from a running event loop."""
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self.window_s
        if not self.pending:
            self._task = loop.create_task(self._run())

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)

        delay = self._rng.uniform(0, self.jitter_s) if self.jitter_s > 0 else 0.0
        if delay:
            logger.debug(f"Regain detected, refetching in {delay:.2f}s")
            await asyncio.sleep(delay)

        # Signals arriving while the callback runs open a new window.
        self._task = None
        self.fired += 1
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Regain callback failed: {e}")

    def cancel(self) -> None:
        """Drop a pending (not yet fired) regain."""
        if self.pending:
            self._task.cancel()
        self._task = None
