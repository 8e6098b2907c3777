"""Change notifications delivered by the push channel."""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ChangeOperation(str, Enum):
    """Row-level change types."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """One insert/update/delete notification for a collection row."""

    collection: str
    operation: ChangeOperation
    key: Any
    payload: Any = None

    @classmethod
    def from_payload(
        cls,
        collection: str,
        raw: Any,
        key_field: str = "id",
    ) -> Optional["ChangeEvent"]:
        """Parse a postgres-changes style payload.

        Args:
            collection: Collection the channel is attached to
            raw: ChangeEvent, or mapping with eventType/new/old keys
            key_field: Row field holding the identity

        Returns:
            Parsed event, or None if the payload is not a recognizable change
        """
        if isinstance(raw, ChangeEvent):
            return raw
        if not isinstance(raw, Mapping):
            return None

        event_type = raw.get("eventType") or raw.get("type") or raw.get("operation")
        try:
            operation = ChangeOperation(str(event_type).upper())
        except ValueError:
            return None

        new = raw.get("new") or raw.get("record") or {}
        old = raw.get("old") or raw.get("old_record") or {}
        row = old if operation == ChangeOperation.DELETE else new
        if not isinstance(row, Mapping):
            return None

        key = row.get(key_field)
        if key is None and isinstance(new, Mapping):
            key = new.get(key_field)
        if key is None and isinstance(old, Mapping):
            key = old.get(key_field)
        if key is None:
            return None

        return cls(
            collection=raw.get("table") or collection,
            operation=operation,
            key=key,
            payload=dict(row),
        )
