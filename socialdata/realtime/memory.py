"""In-memory backend with a push channel.

Simulates the hosted backend for local development and tests:
- fetch() over in-memory tables with equality filters, ordering and limits
- Async writes that publish change events to attached channels
- Injected failures and latency
"""

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Any, Callable, Optional

from ..backend import BackendResponse, TableRequest

logger = logging.getLogger(__name__)


def parse_filter(filter: Optional[str]) -> Optional[tuple[str, str]]:
    """Parse a "field=eq.value" channel filter."""
    if not filter:
        return None
    field_name, sep, rest = filter.partition("=")
    if not sep or not rest.startswith("eq."):
        raise ValueError(f"Unsupported channel filter: {filter!r}")
    return field_name, rest[len("eq."):]


class InMemoryChannel:
    """Push channel bound to one collection of an InMemoryBackend."""

    def __init__(self, backend: "InMemoryBackend", collection: str, filter: Optional[str] = None):
        self._backend = backend
        self.collection = collection
        self._filter = parse_filter(filter)
        self._callback: Optional[Callable[[Any], None]] = None

    @property
    def subscribed(self) -> bool:
        return self._callback is not None

    def subscribe(self, callback: Callable[[Any], None]) -> None:
        self._callback = callback
        self._backend._channels[self.collection].append(self)

    def unsubscribe(self) -> None:
        self._callback = None
        channels = self._backend._channels[self.collection]
        if self in channels:
            channels.remove(self)

    def matches(self, row: Any) -> bool:
        if self._filter is None:
            return True
        field_name, value = self._filter
        return isinstance(row, dict) and str(row.get(field_name)) == value

    def deliver(self, payload: dict[str, Any]) -> None:
        row = payload.get("old") if payload.get("eventType") == "DELETE" else payload.get("new")
        if self._callback is not None and self.matches(row or {}):
            self._callback(payload)


class InMemoryBackend:
    """Backend simulator implementing the fetch/channel contract.

    Usage:
        backend = InMemoryBackend({"profiles": [{"id": 1, "full_name": "Ada"}]})
        backend.fail_next({"code": "53300", "message": "too many connections"})
        response = await backend.fetch(TableRequest("profiles"))
    """

    def __init__(
        self,
        tables: Optional[dict[str, list[dict[str, Any]]]] = None,
        latency: float = 0.0,
        key_field: str = "id",
    ):
        """Initialize backend.

        Args:
            tables: Initial rows per table
            latency: Simulated seconds per call
            key_field: Row identity field
        """
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for name, rows in (tables or {}).items():
            self.tables[name] = copy.deepcopy(rows)
        self.latency = latency
        self.key_field = key_field
        self.calls = 0
        self._failures: list[Any] = []
        self._channels: dict[str, list[InMemoryChannel]] = defaultdict(list)

    def fail_next(self, *failures: Any) -> None:
        """Queue failures for the next calls.

        Exceptions are raised; anything else is returned as the response error.
        """
        self._failures.extend(failures)

    async def _call(self) -> Optional[BackendResponse]:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self._failures:
            failure = self._failures.pop(0)
            if isinstance(failure, BaseException):
                raise failure
            return BackendResponse(data=None, error=failure)
        return None

    async def fetch(self, request: TableRequest) -> BackendResponse:
        failed = await self._call()
        if failed is not None:
            return failed

        rows = [
            r for r in self.tables[request.table]
            if all(r.get(k) == v for k, v in request.filters.items())
        ]
        if request.count_only:
            return BackendResponse(data=None, count=len(rows))

        if request.order_by:
            rows = sorted(
                rows,
                key=lambda r: (r.get(request.order_by) is None, r.get(request.order_by)),
                reverse=request.descending,
            )
        if request.limit is not None:
            rows = rows[: request.limit]

        if request.columns != "*":
            wanted = [c.strip() for c in request.columns.split(",")]
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return BackendResponse(data=copy.deepcopy(rows), count=len(rows))

    def channel(self, collection: str, filter: Optional[str] = None) -> InMemoryChannel:
        return InMemoryChannel(self, collection, filter)

    def subscriber_count(self, collection: str) -> int:
        return len(self._channels[collection])

    def publish(self, collection: str, payload: dict[str, Any]) -> None:
        """Deliver a raw change payload to every attached channel."""
        for channel in list(self._channels[collection]):
            channel.deliver(payload)

    def _find(self, table: str, key: Any) -> Optional[dict[str, Any]]:
        for row in self.tables[table]:
            if row.get(self.key_field) == key:
                return row
        return None

    async def insert(self, table: str, row: dict[str, Any]) -> BackendResponse:
        failed = await self._call()
        if failed is not None:
            return failed
        if self._find(table, row.get(self.key_field)) is not None:
            return BackendResponse(
                error={"code": "23505", "message": "duplicate key value violates unique constraint"}
            )
        stored = copy.deepcopy(row)
        self.tables[table].append(stored)
        self.publish(table, {"eventType": "INSERT", "table": table, "new": copy.deepcopy(stored), "old": {}})
        return BackendResponse(data=[copy.deepcopy(stored)])

    async def update(self, table: str, key: Any, changes: dict[str, Any]) -> BackendResponse:
        failed = await self._call()
        if failed is not None:
            return failed
        row = self._find(table, key)
        if row is None:
            return BackendResponse(error={"code": "PGRST116", "message": "row not found"})
        old = copy.deepcopy(row)
        row.update(changes)
        self.publish(table, {"eventType": "UPDATE", "table": table, "new": copy.deepcopy(row), "old": old})
        return BackendResponse(data=[copy.deepcopy(row)])

    async def delete(self, table: str, key: Any) -> BackendResponse:
        failed = await self._call()
        if failed is not None:
            return failed
        row = self._find(table, key)
        if row is None:
            return BackendResponse(data=[])
        self.tables[table].remove(row)
        self.publish(table, {"eventType": "DELETE", "table": table, "new": {}, "old": copy.deepcopy(row)})
        return BackendResponse(data=[copy.deepcopy(row)])
