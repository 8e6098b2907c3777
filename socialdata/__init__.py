"""socialdata: resilient data access for the alumni social network."""

__version__ = "0.1.0"

from .backend import BackendResponse, RemoteError, TableRequest
from .health import ConnectionMonitor
from .query import QueryClient, QueryController, QueryResult, QueryState, ReconcileSpec
from .realtime import ChangeEvent, ChangeFeedReconciler, ChangeOperation, InMemoryBackend
from .resilience import AttemptPolicy, ClassifiedError, ErrorKind, ResilientExecutor, classify

__all__ = [
    "QueryClient",
    "QueryController",
    "QueryResult",
    "QueryState",
    "ReconcileSpec",
    "ResilientExecutor",
    "AttemptPolicy",
    "ClassifiedError",
    "ErrorKind",
    "classify",
    "ChangeEvent",
    "ChangeOperation",
    "ChangeFeedReconciler",
    "InMemoryBackend",
    "ConnectionMonitor",
    "BackendResponse",
    "RemoteError",
    "TableRequest",
]
