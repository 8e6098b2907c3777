"""Error classification for remote failures.

Maps any raw failure (exception, dict-shaped backend error, status code,
message, synthetic timeout) to a ClassifiedError with a stable kind and a
retryability flag. Classification is pure and total: it never raises.
"""

import asyncio
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .timeout import DeadlineExceeded

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Stable error kinds surfaced to callers."""

    TIMEOUT = "TIMEOUT"
    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    REMOTE_OVERLOADED = "REMOTE_OVERLOADED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION = "VALIDATION"
    UNKNOWN = "UNKNOWN"


RETRYABLE_KINDS = frozenset(
    {ErrorKind.TIMEOUT, ErrorKind.NETWORK_UNAVAILABLE, ErrorKind.REMOTE_OVERLOADED}
)

USER_MESSAGES = {
    ErrorKind.TIMEOUT: "The request took too long to complete. Please try again.",
    ErrorKind.NETWORK_UNAVAILABLE: "Network error. Please check your internet connection.",
    ErrorKind.REMOTE_OVERLOADED: "The service is temporarily overloaded. Please try again in a moment.",
    ErrorKind.PERMISSION_DENIED: "You do not have permission to perform this action.",
    ErrorKind.NOT_FOUND: "The requested resource was not found.",
    ErrorKind.CONFLICT: "This record already exists or is referenced by other data.",
    ErrorKind.VALIDATION: "Some of the submitted values are invalid.",
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}


@dataclass(frozen=True)
class ClassifiedError:
    """Typed failure produced by classify()."""

    kind: ErrorKind
    retryable: bool
    raw_cause: Any = field(default=None, compare=False, repr=False)
    message: str = ""

    @property
    def user_message(self) -> str:
        """Message suitable for display next to degraded content."""
        return USER_MESSAGES[self.kind]

    @property
    def is_blocking(self) -> bool:
        """Whether the UI should render a blocking error state."""
        return self.kind == ErrorKind.PERMISSION_DENIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "retryable": self.retryable,
            "message": self.message,
        }


# Backend error codes (Postgres SQLSTATE and REST gateway codes)
CODE_KINDS: dict[str, ErrorKind] = {
    # Connection exceptions
    "08000": ErrorKind.NETWORK_UNAVAILABLE,
    "08001": ErrorKind.NETWORK_UNAVAILABLE,
    "08003": ErrorKind.NETWORK_UNAVAILABLE,
    "08004": ErrorKind.NETWORK_UNAVAILABLE,
    "08006": ErrorKind.NETWORK_UNAVAILABLE,
    "NETWORK_ERROR": ErrorKind.NETWORK_UNAVAILABLE,
    "ECONNREFUSED": ErrorKind.NETWORK_UNAVAILABLE,
    "ECONNRESET": ErrorKind.NETWORK_UNAVAILABLE,
    # Resource exhaustion, statement timeout, gateway timeout
    "53300": ErrorKind.REMOTE_OVERLOADED,
    "53400": ErrorKind.REMOTE_OVERLOADED,
    "54001": ErrorKind.REMOTE_OVERLOADED,
    "57014": ErrorKind.REMOTE_OVERLOADED,
    "PGRST504": ErrorKind.REMOTE_OVERLOADED,
    # Authorization
    "42501": ErrorKind.PERMISSION_DENIED,
    "PGRST301": ErrorKind.PERMISSION_DENIED,
    "PGRST302": ErrorKind.PERMISSION_DENIED,
    "invalid_grant": ErrorKind.PERMISSION_DENIED,
    "invalid_credentials": ErrorKind.PERMISSION_DENIED,
    # Missing resource
    "PGRST116": ErrorKind.NOT_FOUND,
    "PGRST205": ErrorKind.NOT_FOUND,
    "42P01": ErrorKind.NOT_FOUND,
    # Uniqueness / foreign key
    "23505": ErrorKind.CONFLICT,
    "23503": ErrorKind.CONFLICT,
    # Bad input
    "23502": ErrorKind.VALIDATION,
    "23514": ErrorKind.VALIDATION,
    "22P02": ErrorKind.VALIDATION,
    "22001": ErrorKind.VALIDATION,
    "PGRST100": ErrorKind.VALIDATION,
}

STATUS_KINDS: dict[int, ErrorKind] = {
    0: ErrorKind.NETWORK_UNAVAILABLE,  # fetch never reached the server
    408: ErrorKind.REMOTE_OVERLOADED,
    429: ErrorKind.REMOTE_OVERLOADED,
    500: ErrorKind.REMOTE_OVERLOADED,
    502: ErrorKind.REMOTE_OVERLOADED,
    503: ErrorKind.REMOTE_OVERLOADED,
    504: ErrorKind.REMOTE_OVERLOADED,
    401: ErrorKind.PERMISSION_DENIED,
    403: ErrorKind.PERMISSION_DENIED,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    400: ErrorKind.VALIDATION,
    422: ErrorKind.VALIDATION,
}

# Regex fragments, checked in order; first match wins.
MESSAGE_PATTERNS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (
        ErrorKind.REMOTE_OVERLOADED,
        (
            "too many",
            "overloaded",
            "service unavailable",
            "bad gateway",
            "gateway timeout",
            "internal server error",
            "rate limit",
            "temporar",
            "timed out",
            "timeout",
            "worker threw exception",
        ),
    ),
    (
        ErrorKind.NETWORK_UNAVAILABLE,
        (
            "failed to fetch",
            "connection refused",
            "connection reset",
            "unable to connect",
            "could not connect",
            "network",
            "fetch",
            r"\bconnection\b",  # not the connections table
        ),
    ),
    (
        ErrorKind.PERMISSION_DENIED,
        ("permission", "unauthorized", "forbidden", "row-level security", "jwt"),
    ),
    (ErrorKind.NOT_FOUND, ("not found", "does not exist", "no rows")),
    (
        ErrorKind.CONFLICT,
        ("duplicate key", "already exists", "violates unique", "violates foreign key"),
    ),
    (ErrorKind.VALIDATION, ("invalid input", "violates not-null", "violates check")),
)

_MESSAGE_RULES = tuple(
    (kind, re.compile("|".join(patterns))) for kind, patterns in MESSAGE_PATTERNS
)


def _extract(raw: Any) -> tuple[Optional[str], Optional[int], str]:
    """Pull (code, status, message) out of any raw failure shape."""
    if raw is None:
        return None, None, ""
    if isinstance(raw, str):
        return None, None, raw
    if isinstance(raw, Mapping):
        code = raw.get("code")
        status = raw.get("status", raw.get("status_code"))
        message = raw.get("message") or raw.get("error_description") or ""
    else:
        code = getattr(raw, "code", None)
        status = getattr(raw, "status", None)
        if status is None:
            status = getattr(raw, "status_code", None)
        message = getattr(raw, "message", None) or (
            str(raw) if isinstance(raw, BaseException) else ""
        )

    code_text = str(code) if code not in (None, "") else None
    try:
        status_num = int(status) if status is not None else None
    except (TypeError, ValueError):
        status_num = None
    return code_text, status_num, str(message)


def _kind_for(raw: Any, code: Optional[str], status: Optional[int], message: str) -> ErrorKind:
    if code is not None:
        if code in CODE_KINDS:
            return CODE_KINDS[code]
        # Numeric status codes reported in the code field ("503")
        if code.isdigit() and int(code) in STATUS_KINDS:
            return STATUS_KINDS[int(code)]

    if status is not None and status in STATUS_KINDS:
        return STATUS_KINDS[status]

    # Refused, reset, unreachable host, DNS failure
    if isinstance(raw, OSError):
        return ErrorKind.NETWORK_UNAVAILABLE

    lowered = message.lower()
    for kind, pattern in _MESSAGE_RULES:
        if pattern.search(lowered):
            return kind

    if code is not None and code.startswith("22"):
        return ErrorKind.VALIDATION

    return ErrorKind.UNKNOWN


def classify(raw: Any) -> ClassifiedError:
    """Classify a raw failure.

    Args:
        raw: Exception, dict-shaped error, string, or None

    Returns:
        Exactly one ClassifiedError; unrecognized shapes yield UNKNOWN
    """
    if isinstance(raw, ClassifiedError):
        return raw

    try:
        if isinstance(raw, (DeadlineExceeded, asyncio.TimeoutError, TimeoutError)):
            return ClassifiedError(
                kind=ErrorKind.TIMEOUT,
                retryable=True,
                raw_cause=raw,
                message=str(raw) or "Operation timed out",
            )

        code, status, message = _extract(raw)
        kind = _kind_for(raw, code, status, message)
        return ClassifiedError(
            kind=kind,
            retryable=kind in RETRYABLE_KINDS,
            raw_cause=raw,
            message=message or USER_MESSAGES[kind],
        )
    except Exception as e:
        # Broken __str__ or property access on an exotic error object
        logger.debug(f"Could not inspect raw error, classifying as UNKNOWN: {e!r}")
        return ClassifiedError(
            kind=ErrorKind.UNKNOWN,
            retryable=False,
            raw_cause=raw,
            message=USER_MESSAGES[ErrorKind.UNKNOWN],
        )
