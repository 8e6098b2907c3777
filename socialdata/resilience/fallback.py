"""Fallback values for resources that could not be fetched.

Provides:
- A static table of safe defaults per logical resource kind
- Neutral None for unknown kinds
- Copies on every lookup so callers can mutate what they receive
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Timestamp for the seed rows; fixed at import so repeated lookups compare equal.
_SEED_TIMESTAMP = datetime.now(timezone.utc).isoformat()

WELCOME_TITLE = "Welcome to the Alumni Network"
WELCOME_TEXT = "Connect with fellow alumni and explore opportunities"

DEFAULT_FALLBACKS: dict[str, Any] = {
    "profiles": [],
    "connections": [],
    "jobs": [],
    "events": [],
    "messages": [],
    "notifications": [],
    "announcements": [
        {
            "id": "fallback-1",
            "title": WELCOME_TITLE,
            "content": WELCOME_TEXT,
            "created_at": _SEED_TIMESTAMP,
            "user_id": "system",
        }
    ],
    "activities": [
        {
            "type": "announcement",
            "title": WELCOME_TITLE,
            "description": WELCOME_TEXT,
            "timestamp": _SEED_TIMESTAMP,
        }
    ],
    "stats": {
        "total_users": 4,
        "total_connections": 3,
        "total_jobs": 0,
        "total_events": 0,
    },
    "count": 0,
    "profiles_count": 4,
    "connections_count": 3,
    "connection_test": {"count": 0},
}


class FallbackProvider:
    """Lookup table of safe default values per resource kind.

    Usage:
        provider = FallbackProvider()
        provider.register("groups", [])
        rows = provider.fallback_for("groups")
    """

    def __init__(self, table: Optional[dict[str, Any]] = None):
        """Initialize provider.

        Args:
            table: Initial table (defaults to DEFAULT_FALLBACKS)
        """
        self._table: dict[str, Any] = dict(DEFAULT_FALLBACKS if table is None else table)

    def register(self, resource_kind: str, value: Any) -> None:
        """Register a default for a resource kind.

        Meant for setup time; the table is treated as read-only afterwards.
        """
        self._table[resource_kind] = copy.deepcopy(value)

    def has(self, resource_kind: Optional[str]) -> bool:
        return resource_kind is not None and resource_kind in self._table

    def fallback_for(self, resource_kind: Optional[str]) -> Any:
        """Get the default for a resource kind.

        Args:
            resource_kind: Logical resource kind (e.g. "profiles")

        Returns:
            Copy of the registered default, or None for unknown kinds
        """
        if not self.has(resource_kind):
            logger.debug(f"No fallback registered for {resource_kind!r}")
            return None
        return copy.deepcopy(self._table[resource_kind])

    def known_kinds(self) -> list[str]:
        return sorted(self._table)


default_provider = FallbackProvider()
