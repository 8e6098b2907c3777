"""Resilient call executor.

Wraps one remote operation with:
- A hard per-attempt deadline
- Multi-attempt retry with exponential backoff, gated by classify()
- Fallback substitution once retries are exhausted

Failures never escape as exceptions: execute() returns Success or Degraded.
The executor keeps no state between calls; each execute() is its own
state machine.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from ..backend import RemoteOperation, unwrap_response
from ..monitoring.metrics import attempts_total, call_latency_seconds, fallbacks_total
from .errors import ClassifiedError, classify
from .fallback import FallbackProvider, default_provider
from .retry import DEFAULT_QUERY_POLICY, AttemptPolicy, calculate_backoff
from .timeout import race_deadline

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


# Marks "no explicit fallback value given"; None is a valid fallback value.
MISSING: Any = _Missing()


@dataclass(frozen=True)
class Success:
    """Raw operation succeeded."""

    data: Any
    attempts: int = 1

    @property
    def error(self) -> None:
        return None

    @property
    def served_from_fallback(self) -> bool:
        return False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Degraded:
    """No successful raw result; carries the terminal classified error."""

    data: Any
    error: ClassifiedError
    served_from_fallback: bool
    attempts: int

    @property
    def ok(self) -> bool:
        return False


Outcome = Union[Success, Degraded]


async def _invoke(operation: RemoteOperation) -> Any:
    result = operation()
    if inspect.isawaitable(result):
        result = await result
    return result


class ResilientExecutor:
    """Runs remote operations with deadline, retry and fallback.

    Usage:
        executor = ResilientExecutor()
        outcome = await executor.execute(
            lambda: backend.fetch(request),
            AttemptPolicy(max_attempts=3, base_delay_ms=500),
            resource_kind="profiles",
        )
        if outcome.served_from_fallback:
            ...
    """

    def __init__(
        self,
        fallbacks: Optional[FallbackProvider] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize executor.

        Args:
            fallbacks: Fallback table (defaults to the shared provider)
            sleep: Backoff sleep (defaults to asyncio.sleep)
            clock: Monotonic clock used for latency metrics
        """
        self.fallbacks = fallbacks or default_provider
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

    async def execute(
        self,
        operation: RemoteOperation,
        policy: Optional[AttemptPolicy] = None,
        resource_kind: Optional[str] = None,
        fallback_value: Any = MISSING,
        always_usable: bool = False,
    ) -> Outcome:
        """Execute an operation.

        Args:
            operation: Zero-argument factory, called once per attempt
            policy: Attempt policy (defaults to DEFAULT_QUERY_POLICY)
            resource_kind: Logical resource kind for fallback lookup and metrics
            fallback_value: Explicit fallback, overrides the provider lookup
            always_usable: Serve the fallback even after a non-retryable failure

        Returns:
            Success, or Degraded with the terminal classified error
        """
        if not callable(operation):
            raise TypeError("operation must be a zero-argument callable returning an awaitable")

        policy = policy or DEFAULT_QUERY_POLICY
        label = resource_kind or "unknown"
        started = self._clock()
        error: Optional[ClassifiedError] = None
        attempt = 0

        for attempt in range(1, policy.max_attempts + 1):
            try:
                raw = await race_deadline(
                    _invoke(operation),
                    policy.timeout_seconds,
                    f"{label} query attempt {attempt}",
                )
                data = unwrap_response(raw)
            except Exception as e:
                error = classify(e)
            else:
                attempts_total.labels(resource=label, outcome="success").inc()
                call_latency_seconds.observe(self._clock() - started, resource=label)
                if attempt > 1:
                    logger.info(f"{label} succeeded on attempt {attempt}/{policy.max_attempts}")
                return Success(data=data, attempts=attempt)

            attempts_total.labels(resource=label, outcome=error.kind.value.lower()).inc()

            if not error.retryable:
                logger.warning(f"Non-retryable {error.kind.value} for {label}: {error.message}")
                break

            if attempt == policy.max_attempts:
                logger.error(
                    f"All {policy.max_attempts} attempts failed for {label}: "
                    f"{error.kind.value} {error.message}"
                )
                break

            delay = calculate_backoff(attempt, policy)
            logger.warning(
                f"Attempt {attempt}/{policy.max_attempts} failed for {label}: "
                f"{error.kind.value}. Retrying in {delay:.2f}s"
            )
            await self._sleep(delay)

        call_latency_seconds.observe(self._clock() - started, resource=label)

        if error.retryable or always_usable:
            data = self._fallback(resource_kind, fallback_value)
            fallbacks_total.labels(resource=label, kind=error.kind.value).inc()
            logger.warning(f"Serving fallback data for {label} after {attempt} attempt(s)")
            return Degraded(data=data, error=error, served_from_fallback=True, attempts=attempt)

        return Degraded(data=None, error=error, served_from_fallback=False, attempts=attempt)

    def _fallback(self, resource_kind: Optional[str], fallback_value: Any) -> Any:
        if fallback_value is not MISSING:
            return fallback_value
        return self.fallbacks.fallback_for(resource_kind)
