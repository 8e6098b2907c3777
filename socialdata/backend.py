"""Contracts for the hosted backend collaborator.

The data layer never owns a client. Callers inject:
- an async call primitive (an operation factory per attempt)
- a push channel for change notifications
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

# Zero-argument factory; called once per attempt so each attempt gets a fresh awaitable.
RemoteOperation = Callable[[], Awaitable[Any]]


class RemoteError(Exception):
    """Raw failure reported by the backend.

    Carries the status/code/message fields used as classifier input.
    """

    def __init__(
        self,
        message: str = "",
        code: Optional[str] = None,
        status: Optional[int] = None,
        details: Any = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.details = details
        self.hint = hint

    @classmethod
    def from_payload(cls, payload: Any) -> "RemoteError":
        """Build from a dict-shaped or attribute-shaped backend error."""
        if isinstance(payload, RemoteError):
            return payload
        if isinstance(payload, Mapping):
            status = payload.get("status")
            return cls(
                message=str(payload.get("message") or ""),
                code=_as_code(payload.get("code")),
                status=_as_status(status),
                details=payload.get("details"),
                hint=payload.get("hint"),
            )
        return cls(
            message=str(getattr(payload, "message", "") or payload),
            code=_as_code(getattr(payload, "code", None)),
            status=_as_status(getattr(payload, "status", None)),
            details=getattr(payload, "details", None),
            hint=getattr(payload, "hint", None),
        )

    def __repr__(self) -> str:
        return f"RemoteError(code={self.code!r}, status={self.status!r}, message={self.message!r})"


def _as_code(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _as_status(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


@dataclass
class BackendResponse:
    """`{data, error}` response shape returned by the call primitive."""

    data: Any = None
    error: Any = None
    count: Optional[int] = None


def unwrap_response(raw: Any) -> Any:
    """Turn a raw call result into data, raising its error if it carries one.

    Args:
        raw: BackendResponse, mapping with data/error keys, object with
            data/error attributes, or a plain value

    Returns:
        The response data (or its count for head-only count queries)

    Raises:
        Exception: The embedded error, as RemoteError unless already an exception
    """
    if isinstance(raw, BackendResponse):
        data, error, count = raw.data, raw.error, raw.count
    elif isinstance(raw, Mapping) and ("data" in raw or "error" in raw):
        data, error, count = raw.get("data"), raw.get("error"), raw.get("count")
    elif hasattr(raw, "data") and hasattr(raw, "error"):
        data, error, count = raw.data, raw.error, getattr(raw, "count", None)
    else:
        return raw

    if error:
        if isinstance(error, BaseException):
            raise error
        raise RemoteError.from_payload(error)

    if data is None and count is not None:
        return count
    return data


@dataclass(frozen=True)
class TableRequest:
    """A read against one backend collection."""

    table: str
    columns: str = "*"
    filters: dict[str, Any] = field(default_factory=dict)
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None
    count_only: bool = False


class ChangeChannel(Protocol):
    """Push channel delivering change notifications for one collection."""

    def subscribe(self, callback: Callable[[Any], None]) -> None:
        ...

    def unsubscribe(self) -> None:
        ...


class Backend(Protocol):
    """Async call primitive plus push-channel factory."""

    async def fetch(self, request: TableRequest) -> Any:
        ...

    def channel(self, collection: str, filter: Optional[str] = None) -> ChangeChannel:
        ...
