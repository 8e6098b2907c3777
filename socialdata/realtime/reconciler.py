"""Change-feed reconciliation.

Merges live insert/update/delete notifications into an already-fetched
result set:
- Insert/Update upsert the row for the event key, ordered by the
  collection's sort key rather than arrival order
- Delete removes the row if present, as does an Insert/Update whose row
  no longer satisfies the collection's filters
- The collection never grows past its limit
- Updates for keys never seen are accepted as inserts

Delivery order from the backend is not causal order, so every merge is
idempotent: re-applying an event, or receiving an Update before its Insert,
leaves exactly one row per key.
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional, Union

from ..backend import ChangeChannel
from ..monitoring.metrics import change_events_total
from .events import ChangeEvent, ChangeOperation

logger = logging.getLogger(__name__)

SortKey = Union[str, Callable[[Any], Any], None]
ChannelSource = Any  # Backend with .channel(), or callable(collection, filter) -> ChangeChannel


class SubscriptionHandle:
    """Lifetime of one attachment to a push channel.

    Released exactly once; detach() is idempotent.
    """

    def __init__(self, channel: ChangeChannel, collection: str):
        self._channel = channel
        self.collection = collection
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def detach(self) -> bool:
        """Release the channel subscription.

        Returns:
            True if this call released it, False if already detached
        """
        if not self._active:
            return False
        self._active = False
        try:
            self._channel.unsubscribe()
        except Exception as e:
            logger.warning(f"Error while unsubscribing from {self.collection}: {e}")
        logger.info(f"Detached change feed for {self.collection}")
        return True


def _open_channel(source: ChannelSource, collection: str, filter: Optional[str]) -> ChangeChannel:
    if hasattr(source, "channel"):
        return source.channel(collection, filter)
    if callable(source):
        return source(collection, filter)
    raise TypeError("Change feed source must provide channel() or be a channel factory")


class ChangeFeedReconciler:
    """Applies change events to a held collection.

    Usage:
        reconciler = ChangeFeedReconciler(sort_key="created_at", descending=True)
        handle = reconciler.attach(backend, "messages", "room_id=eq.7", on_change)
        rows = reconciler.apply(rows, event)
        handle.detach()
    """

    def __init__(
        self,
        key_field: str = "id",
        sort_key: SortKey = None,
        descending: bool = False,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ):
        """Initialize reconciler.

        Args:
            key_field: Row field holding the identity
            sort_key: Field name or key function for ordering; None keeps
                existing positions and appends new rows
            descending: Sort newest/largest first
            filters: Equality filters the held rows satisfy; rows changed
                to fail them leave the collection
            limit: Maximum number of held rows
        """
        self.key_field = key_field
        self.sort_key = sort_key
        self.descending = descending
        self.filters = dict(filters or {})
        self.limit = limit

    def attach(
        self,
        source: ChannelSource,
        collection: str,
        filter: Optional[str],
        on_change: Callable[[ChangeEvent], None],
    ) -> SubscriptionHandle:
        """Subscribe to a collection's change channel.

        Args:
            source: Backend or channel factory
            collection: Collection name
            filter: Backend-side row filter (e.g. "user_id=eq.42")
            on_change: Called with each parsed event while attached

        Returns:
            Handle owning the subscription
        """
        channel = _open_channel(source, collection, filter)
        handle = SubscriptionHandle(channel, collection)

        def deliver(raw: Any) -> None:
            if not handle.active:
                return
            event = ChangeEvent.from_payload(collection, raw, self.key_field)
            if event is None:
                logger.debug(f"Ignoring unrecognized change payload on {collection}: {raw!r}")
                return
            on_change(event)

        channel.subscribe(deliver)
        logger.info(f"Attached change feed for {collection} (filter={filter!r})")
        return handle

    def _row_key(self, row: Any) -> Any:
        if isinstance(row, Mapping):
            return row.get(self.key_field)
        return getattr(row, self.key_field, None)

    def _matches(self, row: Any) -> bool:
        if not isinstance(row, Mapping):
            return not self.filters
        return all(row.get(k) == v for k, v in self.filters.items())

    def _sort_value(self, row: Any) -> Any:
        if callable(self.sort_key):
            return self.sort_key(row)
        if isinstance(row, Mapping):
            return row.get(self.sort_key)
        return getattr(row, self.sort_key, None)

    def _ordered(self, rows: list) -> list:
        if self.sort_key is None:
            return rows
        keyed = [r for r in rows if self._sort_value(r) is not None]
        unkeyed = [r for r in rows if self._sort_value(r) is None]
        keyed.sort(key=self._sort_value, reverse=self.descending)
        return keyed + unkeyed

    def apply(self, rows: Any, event: ChangeEvent) -> Any:
        """Merge one event into a held collection.

        Args:
            rows: Current held rows (a list; anything else is returned as-is)
            event: Change to apply

        Returns:
            New list with the event applied; the input is not mutated
        """
        if not isinstance(rows, list):
            logger.debug(f"Held data for {event.collection} is not a collection; skipping event")
            return rows

        change_events_total.labels(
            collection=event.collection, operation=event.operation.value
        ).inc()

        if event.operation == ChangeOperation.DELETE or (
            event.payload is not None and not self._matches(event.payload)
        ):
            return [r for r in rows if self._row_key(r) != event.key]

        if event.payload is None:
            logger.debug(f"{event.operation.value} for {event.collection}:{event.key} has no payload")
            return rows

        merged = []
        replaced = False
        for row in rows:
            if self._row_key(row) == event.key:
                if not replaced:
                    merged.append(event.payload)
                    replaced = True
                # Further rows with the same key are duplicates; drop them.
                continue
            merged.append(row)

        if not replaced:
            merged.append(event.payload)

        merged = self._ordered(merged)
        if self.limit is not None:
            merged = merged[: self.limit]
        return merged
