"""Query client: the entry point used by page code.

Keeps one QueryController per logical query key and runs mutations
under the stricter mutation policy.
"""

import dataclasses
import logging
from typing import Any, Iterable, Optional

from ..backend import RemoteOperation
from ..config import Settings, settings as default_settings
from ..resilience.executor import MISSING, ResilientExecutor
from ..resilience.fallback import FallbackProvider
from ..resilience.retry import AttemptPolicy
from .controller import QueryController, QueryResult, ReconcileSpec

logger = logging.getLogger(__name__)

# A mutation may be retried at most once.
MAX_MUTATION_ATTEMPTS = 2


class QueryClient:
    """Registry of query controllers plus mutation runner.

    Usage:
        client = QueryClient()
        profiles = client.run("profiles", lambda: backend.fetch(req),
                              resource_kind="profiles")
        profiles.subscribe(render)
        await client.mutate(lambda: backend.insert("jobs", job), invalidates=["jobs"])
    """

    def __init__(
        self,
        executor: Optional[ResilientExecutor] = None,
        settings: Optional[Settings] = None,
        fallbacks: Optional[FallbackProvider] = None,
    ):
        """Initialize client.

        Args:
            executor: Shared executor (built from fallbacks if omitted)
            settings: Settings for default policies and focus handling
            fallbacks: Fallback table for the default executor
        """
        self.settings = settings or default_settings
        self.executor = executor or ResilientExecutor(fallbacks=fallbacks)
        self.query_policy = AttemptPolicy.from_settings(self.settings)
        self.mutation_policy = AttemptPolicy.from_settings(self.settings, mutation=True)
        self._controllers: dict[str, QueryController] = {}

    @property
    def controllers(self) -> dict[str, QueryController]:
        return dict(self._controllers)

    def get(self, query_key: str) -> Optional[QueryController]:
        return self._controllers.get(query_key)

    def run(
        self,
        query_key: str,
        operation_factory: RemoteOperation,
        policy: Optional[AttemptPolicy] = None,
        *,
        timeout_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        fallback_value: Any = MISSING,
        refetch_on_regain_focus: Optional[bool] = None,
        resource_kind: Optional[str] = None,
        always_usable: bool = False,
        reconcile: Optional[ReconcileSpec] = None,
    ) -> QueryController:
        """Get (or create) the controller for a key and start it.

        The first call for a key fixes its operation and options; later calls
        reuse the existing controller and join any in-flight execution.
        Must be called from a running event loop.

        Returns:
            The subscribable controller for the key
        """
        controller = self._controllers.get(query_key)
        if controller is None or controller.torn_down:
            effective = (policy or self.query_policy).with_overrides(
                timeout_ms=timeout_ms,
                max_attempts=max_attempts,
                base_delay_ms=base_delay_ms,
            )
            if refetch_on_regain_focus is None:
                refetch_on_regain_focus = self.settings.refetch_on_regain_focus
            controller = QueryController(
                query_key,
                operation_factory,
                executor=self.executor,
                policy=effective,
                resource_kind=resource_kind or query_key,
                fallback_value=fallback_value,
                always_usable=always_usable,
                refetch_on_regain_focus=refetch_on_regain_focus,
                reconcile=reconcile,
                focus_window_s=self.settings.focus_debounce_ms / 1000.0,
                focus_jitter_s=self.settings.focus_jitter_ms / 1000.0,
            )
            self._controllers[query_key] = controller
            logger.debug(f"Created controller for {query_key}")

        controller.start()
        return controller

    async def fetch(
        self,
        query_key: str,
        operation_factory: RemoteOperation,
        policy: Optional[AttemptPolicy] = None,
        **options: Any,
    ) -> QueryResult:
        """Run a query and wait for its result."""
        controller = self.run(query_key, operation_factory, policy, **options)
        return await controller.run()

    async def mutate(
        self,
        operation_factory: RemoteOperation,
        policy: Optional[AttemptPolicy] = None,
        resource_kind: Optional[str] = None,
        invalidates: Iterable[str] = (),
    ) -> QueryResult:
        """Run a create/update/delete against the backend.

        At most one retry is made, so a write that timed out ambiguously may
        still be applied twice. Callers needing exactly-once semantics must
        send their own idempotency key.

        Args:
            operation_factory: Zero-argument factory for the write
            policy: Attempt policy (max_attempts is capped at 2)
            resource_kind: Label for logging and metrics
            invalidates: Query keys to mark stale after a successful write

        Returns:
            Result of the write; never raises for remote failures
        """
        policy = policy or self.mutation_policy
        if policy.max_attempts > MAX_MUTATION_ATTEMPTS:
            logger.warning(
                f"Capping mutation attempts at {MAX_MUTATION_ATTEMPTS} (requested {policy.max_attempts})"
            )
            policy = dataclasses.replace(policy, max_attempts=MAX_MUTATION_ATTEMPTS)

        outcome = await self.executor.execute(
            operation_factory,
            policy,
            resource_kind=resource_kind,
            fallback_value=None,
        )
        result = QueryResult.from_outcome(outcome)

        if outcome.ok:
            for key in invalidates:
                self.invalidate(key)
        else:
            logger.warning(f"Mutation failed for {resource_kind or 'unknown'}: {outcome.error.kind.value}")
        return result

    def invalidate(self, query_key: str) -> bool:
        """Force the next run() for a key to re-execute.

        Returns:
            True if a controller exists for the key
        """
        controller = self._controllers.get(query_key)
        if controller is None:
            return False
        controller.invalidate()
        return True

    def focus_regained(self) -> None:
        """Broadcast a focus/visibility regain to every query."""
        for controller in list(self._controllers.values()):
            controller.focus_regained()

    def remove(self, query_key: str) -> None:
        """Tear down and forget a query."""
        controller = self._controllers.pop(query_key, None)
        if controller is not None:
            controller.teardown()

    def close(self) -> None:
        """Tear down every query."""
        for key in list(self._controllers):
            self.remove(key)
