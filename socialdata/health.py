"""Backend connection monitoring.

Provides:
- A periodic health probe run through the resilient executor
- Connection status with consecutive-failure count and last latency
- ensure_connection() with exponential backoff while disconnected
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .backend import RemoteOperation
from .config import settings
from .monitoring.metrics import backend_connected
from .resilience.executor import ResilientExecutor
from .resilience.retry import HEALTH_CHECK_POLICY, AttemptPolicy

logger = logging.getLogger(__name__)


@dataclass
class ConnectionStatus:
    """Result of the most recent health probe."""

    is_connected: bool = False
    last_check: Optional[datetime] = None
    retry_count: int = 0  # Consecutive failed probes
    last_latency_ms: Optional[float] = None


class ConnectionMonitor:
    """Tracks whether the backend is reachable.

    Usage:
        monitor = ConnectionMonitor(lambda: backend.fetch(TableRequest("profiles", limit=1)))
        monitor.start()
        if await monitor.ensure_connection():
            ...
        await monitor.stop()
    """

    def __init__(
        self,
        probe: RemoteOperation,
        executor: Optional[ResilientExecutor] = None,
        interval_s: Optional[float] = None,
        timeout_ms: Optional[int] = None,
        slow_ms: Optional[int] = None,
    ):
        """Initialize monitor.

        Args:
            probe: Cheap remote read used as the health check
            executor: Executor to run probes through
            interval_s: Seconds between periodic checks
            timeout_ms: Deadline for a single probe
            slow_ms: Latency above which a healthy probe is logged as slow
        """
        self._probe = probe
        self._executor = executor or ResilientExecutor()
        self.interval_s = interval_s if interval_s is not None else settings.health_check_interval_s
        self.policy: AttemptPolicy = HEALTH_CHECK_POLICY.with_overrides(
            timeout_ms=timeout_ms if timeout_ms is not None else settings.health_check_timeout_ms
        )
        self.slow_ms = slow_ms if slow_ms is not None else settings.slow_response_ms
        self._status = ConnectionStatus()
        self._task: Optional[asyncio.Task] = None

    def status(self) -> ConnectionStatus:
        """Get a copy of the current status."""
        return dataclasses.replace(self._status)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check(self) -> bool:
        """Run one probe and update the status.

        Returns:
            True if the backend answered
        """
        started = time.monotonic()
        outcome = await self._executor.execute(
            self._probe,
            self.policy,
            resource_kind="connection_test",
        )
        latency_ms = (time.monotonic() - started) * 1000.0
        self._status.last_check = datetime.now(timezone.utc)
        self._status.last_latency_ms = latency_ms

        if outcome.ok:
            self._status.is_connected = True
            self._status.retry_count = 0
            if latency_ms > self.slow_ms:
                logger.warning(f"Backend response is slow: {latency_ms:.0f}ms")
        else:
            self._status.is_connected = False
            self._status.retry_count += 1
            logger.warning(
                f"Backend connection check failed ({outcome.error.kind.value}): {outcome.error.message}"
            )

        backend_connected.set(1.0 if self._status.is_connected else 0.0)
        return self._status.is_connected

    async def ensure_connection(self, max_retries: int = 3, base_delay_ms: int = 1000) -> bool:
        """Wait for the backend to become reachable.

        Args:
            max_retries: Reconnect attempts
            base_delay_ms: First backoff delay, doubled per attempt

        Returns:
            True if connected (immediately or after reconnecting)
        """
        if self._status.is_connected:
            return True

        for attempt in range(max_retries):
            delay_ms = base_delay_ms * (2**attempt)
            logger.info(f"Attempting to reconnect (attempt {attempt + 1}/{max_retries}) in {delay_ms}ms")
            await asyncio.sleep(delay_ms / 1000.0)
            if await self.check():
                logger.info("Successfully reconnected to backend")
                return True

        logger.error("Failed to reconnect after maximum retries")
        return False

    def start(self) -> None:
        """Start periodic checks. Must be called from a running event loop."""
        if self.is_running:
            logger.warning("Connection monitor already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"Connection monitor started (every {self.interval_s}s)")

    async def _loop(self) -> None:
        while True:
            try:
                await self.check()
            except Exception as e:
                logger.warning(f"Health check error: {e}")
            await asyncio.sleep(self.interval_s)

    async def stop(self) -> None:
        """Stop periodic checks."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Connection monitor stopped")
