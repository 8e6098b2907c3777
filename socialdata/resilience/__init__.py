"""Resilience layer for socialdata.

This module provides:
- Error classification with retryability
- Fallback values per resource kind
- Attempt policies with exponential backoff
- Deadline races that never cancel the underlying work
- The resilient call executor tying them together
"""

from .errors import ClassifiedError, ErrorKind, classify
from .executor import MISSING, Degraded, Outcome, ResilientExecutor, Success
from .fallback import FallbackProvider, default_provider
from .retry import (
    DEFAULT_QUERY_POLICY,
    HEALTH_CHECK_POLICY,
    MUTATION_POLICY,
    AttemptPolicy,
    calculate_backoff,
)
from .timeout import DeadlineExceeded, race_deadline

__all__ = [
    "classify",
    "ClassifiedError",
    "ErrorKind",
    "ResilientExecutor",
    "Success",
    "Degraded",
    "Outcome",
    "MISSING",
    "FallbackProvider",
    "default_provider",
    "AttemptPolicy",
    "calculate_backoff",
    "DEFAULT_QUERY_POLICY",
    "MUTATION_POLICY",
    "HEALTH_CHECK_POLICY",
    "DeadlineExceeded",
    "race_deadline",
]
