"""Attempt policies and exponential backoff.

Provides:
- AttemptPolicy: attempt count, base delay and hard per-attempt timeout
- Exponential backoff with optional jitter and cap
- Presets for queries, mutations and health checks
"""

import dataclasses
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from .timeout import HEALTH_CHECK_TIMEOUT_MS, MUTATION_TIMEOUT_MS, QUERY_TIMEOUT_MS

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

# Recognized call-site option names -> AttemptPolicy fields
OPTION_FIELDS = {
    "timeout_ms": "hard_timeout_ms",
    "hard_timeout_ms": "hard_timeout_ms",
    "max_attempts": "max_attempts",
    "base_delay_ms": "base_delay_ms",
    "max_delay_ms": "max_delay_ms",
    "jitter": "jitter",
}


@dataclass(frozen=True)
class AttemptPolicy:
    """Per-call-site retry configuration."""

    max_attempts: int = 3
    base_delay_ms: int = 1000
    hard_timeout_ms: int = QUERY_TIMEOUT_MS
    max_delay_ms: Optional[int] = None  # Cap on a single backoff sleep
    jitter: float = 0.0  # Random jitter factor (0-1)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms <= 0:
            raise ValueError(f"base_delay_ms must be > 0, got {self.base_delay_ms}")
        if self.hard_timeout_ms <= 0:
            raise ValueError(f"hard_timeout_ms must be > 0, got {self.hard_timeout_ms}")
        if self.max_delay_ms is not None and self.max_delay_ms <= 0:
            raise ValueError(f"max_delay_ms must be > 0, got {self.max_delay_ms}")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be within [0, 1], got {self.jitter}")

    @property
    def timeout_seconds(self) -> float:
        return self.hard_timeout_ms / 1000.0

    def with_overrides(self, **options: Any) -> "AttemptPolicy":
        """Return a copy with recognized call-site options applied.

        Unrecognized and None-valued options are ignored.
        """
        changes = {
            OPTION_FIELDS[name]: value
            for name, value in options.items()
            if name in OPTION_FIELDS and value is not None
        }
        if not changes:
            return self
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_settings(cls, settings: "Settings", mutation: bool = False) -> "AttemptPolicy":
        """Build the query (or mutation) policy from settings."""
        if mutation:
            return cls(
                max_attempts=settings.mutation_max_attempts,
                base_delay_ms=settings.base_delay_ms,
                hard_timeout_ms=settings.mutation_timeout_ms,
                max_delay_ms=settings.max_delay_ms,
            )
        return cls(
            max_attempts=settings.query_max_attempts,
            base_delay_ms=settings.base_delay_ms,
            hard_timeout_ms=settings.query_timeout_ms,
            max_delay_ms=settings.max_delay_ms,
        )


def calculate_backoff(attempt: int, policy: AttemptPolicy) -> float:
    """Calculate the sleep after a failed attempt.

    Args:
        attempt: The attempt that just failed (1-indexed)
        policy: Attempt policy

    Returns:
        Delay in seconds
    """
    # Exponential backoff: base_delay * 2^(attempt-1)
    delay_ms = policy.base_delay_ms * (2 ** (attempt - 1))

    if policy.jitter:
        jitter_range = delay_ms * policy.jitter
        delay_ms += random.uniform(-jitter_range, jitter_range)

    if policy.max_delay_ms is not None:
        delay_ms = min(delay_ms, policy.max_delay_ms)

    return max(delay_ms, 0.0) / 1000.0


# Pre-configured policies
DEFAULT_QUERY_POLICY = AttemptPolicy(
    max_attempts=3,
    base_delay_ms=1000,
    hard_timeout_ms=QUERY_TIMEOUT_MS,
    max_delay_ms=5000,
)

# One retry at most: a retried write may be applied twice by the backend.
MUTATION_POLICY = AttemptPolicy(
    max_attempts=2,
    base_delay_ms=1000,
    hard_timeout_ms=MUTATION_TIMEOUT_MS,
)

HEALTH_CHECK_POLICY = AttemptPolicy(
    max_attempts=1,
    base_delay_ms=1000,
    hard_timeout_ms=HEALTH_CHECK_TIMEOUT_MS,
)
