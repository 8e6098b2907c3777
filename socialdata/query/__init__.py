"""Query lifecycle for socialdata.

This module provides:
- QueryController: state of one logical query
- QueryClient: controllers by key, mutations, invalidation
- FocusDebouncer: coalesced focus/visibility regain
"""

from .client import QueryClient
from .controller import QueryController, QueryResult, QueryState, ReconcileSpec
from .focus import FocusDebouncer

__all__ = [
    "QueryClient",
    "QueryController",
    "QueryResult",
    "QueryState",
    "ReconcileSpec",
    "FocusDebouncer",
]
