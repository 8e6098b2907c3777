"""Query lifecycle controller.

Owns the observable state of one logical query:
- IDLE -> PENDING -> SUCCESS | DEGRADED, back to PENDING on run/refetch/regain
- At most one in-flight execution per query key; concurrent callers join it
- Optional change-feed reconciliation after the first successful read

Teardown stops publication and detaches the change feed. In-flight
operations are not cancelled; their results are discarded.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from ..backend import RemoteOperation
from ..realtime.events import ChangeEvent
from ..realtime.reconciler import ChangeFeedReconciler, SortKey, SubscriptionHandle
from ..resilience.errors import ClassifiedError
from ..resilience.executor import MISSING, Outcome, ResilientExecutor
from ..resilience.retry import DEFAULT_QUERY_POLICY, AttemptPolicy
from .focus import FocusDebouncer

logger = logging.getLogger(__name__)


class QueryState(str, Enum):
    """Lifecycle states of a query."""

    IDLE = "IDLE"
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    DEGRADED = "DEGRADED"


@dataclass
class QueryResult:
    """Observable result of one logical query."""

    data: Any = None
    error: Optional[ClassifiedError] = None
    served_from_fallback: bool = False
    last_updated_at: Optional[datetime] = None
    state: QueryState = QueryState.IDLE
    is_stale: bool = False

    @property
    def is_loading(self) -> bool:
        return self.state == QueryState.PENDING

    @property
    def ok(self) -> bool:
        return self.error is None and self.state == QueryState.SUCCESS

    def snapshot(self) -> "QueryResult":
        return dataclasses.replace(self)

    @classmethod
    def from_outcome(cls, outcome: Outcome) -> "QueryResult":
        return cls(
            data=outcome.data,
            error=outcome.error,
            served_from_fallback=outcome.served_from_fallback,
            last_updated_at=datetime.now(timezone.utc),
            state=QueryState.SUCCESS if outcome.ok else QueryState.DEGRADED,
        )


@dataclass(frozen=True)
class ReconcileSpec:
    """How a query attaches to its collection's change feed."""

    source: Any  # Backend with .channel(), or callable(collection, filter)
    collection: str
    filter: Optional[str] = None
    key_field: str = "id"
    sort_key: SortKey = None
    descending: bool = False
    filters: dict[str, Any] = field(default_factory=dict)  # Equality filters of the read
    limit: Optional[int] = None


Listener = Callable[[QueryResult], None]


class QueryController:
    """State holder and execution coordinator for one query key.

    Usage:
        controller = QueryController("profiles", lambda: backend.fetch(req),
                                     resource_kind="profiles")
        unsubscribe = controller.subscribe(render)
        result = await controller.run()
        ...
        controller.teardown()
    """

    def __init__(
        self,
        key: str,
        operation_factory: RemoteOperation,
        executor: Optional[ResilientExecutor] = None,
        policy: Optional[AttemptPolicy] = None,
        resource_kind: Optional[str] = None,
        fallback_value: Any = MISSING,
        always_usable: bool = False,
        refetch_on_regain_focus: bool = False,
        reconcile: Optional[ReconcileSpec] = None,
        focus_window_s: float = 1.0,
        focus_jitter_s: float = 2.0,
    ):
        """Initialize controller.

        Args:
            key: Logical query key
            operation_factory: Zero-argument factory for the remote read
            executor: Executor to run attempts through
            policy: Attempt policy for this query
            resource_kind: Resource kind for fallback lookup
            fallback_value: Explicit fallback value
            always_usable: Serve a fallback even on non-retryable failures
            refetch_on_regain_focus: Refetch when focus/visibility is regained
            reconcile: Change feed to merge into the held result
            focus_window_s: Regain debounce window
            focus_jitter_s: Upper bound of the random regain delay
        """
        self.key = key
        self._operation_factory = operation_factory
        self._executor = executor or ResilientExecutor()
        self.policy = policy or DEFAULT_QUERY_POLICY
        self.resource_kind = resource_kind
        self._fallback_value = fallback_value
        self._always_usable = always_usable
        self.refetch_on_regain_focus = refetch_on_regain_focus
        self._reconcile = reconcile
        self._reconciler: Optional[ChangeFeedReconciler] = None
        if reconcile is not None:
            self._reconciler = ChangeFeedReconciler(
                key_field=reconcile.key_field,
                sort_key=reconcile.sort_key,
                descending=reconcile.descending,
                filters=reconcile.filters,
                limit=reconcile.limit,
            )

        self.result = QueryResult()
        self._listeners: list[Listener] = []
        self._inflight: Optional[asyncio.Task] = None
        self._handle: Optional[SubscriptionHandle] = None
        # Events received while an execution is in flight, replayed onto its result
        self._inflight_events: Optional[list[ChangeEvent]] = None
        self._torn_down = False
        self.executions = 0
        self._debouncer = FocusDebouncer(
            self._refetch_on_regain,
            window_s=focus_window_s,
            jitter_s=focus_jitter_s,
        )

    @property
    def state(self) -> QueryState:
        return self.result.state

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    @property
    def subscription(self) -> Optional[SubscriptionHandle]:
        return self._handle

    def subscribe(self, on_update: Listener) -> Callable[[], None]:
        """Register a listener; it immediately receives the current result.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(on_update)
        self._notify(on_update)

        def unsubscribe() -> None:
            if on_update in self._listeners:
                self._listeners.remove(on_update)

        return unsubscribe

    def _notify(self, listener: Listener) -> None:
        try:
            listener(self.result.snapshot())
        except Exception as e:
            logger.error(f"Listener for query {self.key} failed: {e}")

    def _publish(self) -> None:
        if self._torn_down:
            return
        for listener in list(self._listeners):
            self._notify(listener)

    def start(self, force: bool = False) -> "asyncio.Future[QueryResult]":
        """Schedule an execution without waiting for it.

        Returns the in-flight task when one exists, so callers in the same
        pending window share a single execution.
        """
        if self._torn_down:
            raise RuntimeError(f"Query {self.key} has been torn down")

        if self._inflight is not None and not self._inflight.done():
            logger.debug(f"Query {self.key} already pending; joining in-flight execution")
            return self._inflight

        if not force and self.result.state == QueryState.SUCCESS and not self.result.is_stale:
            done: asyncio.Future = asyncio.get_running_loop().create_future()
            done.set_result(self.result.snapshot())
            return done

        self._inflight = asyncio.get_running_loop().create_task(self._execute())
        return self._inflight

    async def run(self) -> QueryResult:
        """Execute unless a fresh successful result is already held."""
        return await asyncio.shield(self.start())

    async def refetch(self) -> QueryResult:
        """Execute even if a fresh result is held."""
        return await asyncio.shield(self.start(force=True))

    def invalidate(self) -> None:
        """Mark the held result stale so the next run() re-executes."""
        if self.result.is_stale:
            return
        self.result.is_stale = True
        self._publish()

    def focus_regained(self) -> None:
        """Signal that the view regained focus or visibility."""
        if self._torn_down or not self.refetch_on_regain_focus:
            return
        self._debouncer.trigger()

    async def _refetch_on_regain(self) -> None:
        if self._torn_down:
            return
        logger.info(f"Focus regained, refetching {self.key}")
        await self.refetch()

    async def _execute(self) -> QueryResult:
        self.executions += 1
        self._inflight_events = []
        self.result.state = QueryState.PENDING
        self._publish()

        outcome = await self._executor.execute(
            self._operation_factory,
            self.policy,
            resource_kind=self.resource_kind,
            fallback_value=self._fallback_value,
            always_usable=self._always_usable,
        )

        events, self._inflight_events = self._inflight_events or [], None

        if self._torn_down:
            logger.debug(f"Discarding result for torn-down query {self.key}")
            return QueryResult.from_outcome(outcome)

        fresh = QueryResult.from_outcome(outcome)
        if outcome.ok and events:
            # The read may predate these events; merges are idempotent either way.
            logger.debug(f"Replaying {len(events)} change event(s) onto fresh {self.key} result")
            for event in events:
                fresh.data = self._reconciler.apply(fresh.data, event)
        self.result.data = fresh.data
        self.result.error = fresh.error
        self.result.served_from_fallback = fresh.served_from_fallback
        self.result.last_updated_at = fresh.last_updated_at
        self.result.state = fresh.state
        self.result.is_stale = False
        self._publish()

        if outcome.ok and self._reconcile is not None and self._handle is None:
            self._attach_feed()

        return self.result.snapshot()

    def _attach_feed(self) -> None:
        spec = self._reconcile
        try:
            self._handle = self._reconciler.attach(
                spec.source, spec.collection, spec.filter, self._on_change
            )
        except Exception as e:
            # The query stays usable without live updates.
            logger.warning(f"Could not attach change feed for {self.key}: {e}")

    def _on_change(self, event: ChangeEvent) -> None:
        if self._torn_down or event.collection != self._reconcile.collection:
            return
        if self._inflight_events is not None:
            self._inflight_events.append(event)
        merged = self._reconciler.apply(self.result.data, event)
        if merged == self.result.data:
            return
        self.result.data = merged
        self.result.last_updated_at = datetime.now(timezone.utc)
        self._publish()

    def teardown(self) -> None:
        """Stop publishing and release the change feed. Idempotent."""
        if self._torn_down:
            return
        self._torn_down = True
        self._debouncer.cancel()
        if self._handle is not None:
            self._handle.detach()
        self._listeners.clear()
        logger.info(f"Query {self.key} torn down")
