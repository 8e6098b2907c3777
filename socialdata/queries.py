"""Catalog of common logical queries.

Each entry pairs a backend read with the resource kind whose fallback is
served when the read cannot be completed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .backend import Backend, RemoteOperation, TableRequest
from .query.client import QueryClient
from .query.controller import QueryController, ReconcileSpec
from .resilience.retry import AttemptPolicy

logger = logging.getLogger(__name__)

CONNECTION_TEST_POLICY = AttemptPolicy(max_attempts=2, base_delay_ms=1000, hard_timeout_ms=5000)


@dataclass(frozen=True)
class CatalogQuery:
    """A named backend read with its fallback kind."""

    key: str
    request: TableRequest
    resource_kind: str
    policy: Optional[AttemptPolicy] = None
    sort_key: Optional[str] = None
    descending: bool = False


class QueryCatalog:
    """Builds the queries page code runs most often.

    Usage:
        catalog = QueryCatalog(backend)
        controller = catalog.run(client, catalog.recent_connections(limit=5), live=True)
    """

    def __init__(self, backend: Backend):
        self.backend = backend

    def profiles(self) -> CatalogQuery:
        return CatalogQuery(
            key="profiles",
            request=TableRequest("profiles", order_by="full_name"),
            resource_kind="profiles",
            sort_key="full_name",
        )

    def user_count(self) -> CatalogQuery:
        return CatalogQuery(
            key="profiles:count",
            request=TableRequest("profiles", count_only=True),
            resource_kind="profiles_count",
        )

    def connections_count(self) -> CatalogQuery:
        return CatalogQuery(
            key="connections:count",
            request=TableRequest("connections", count_only=True),
            resource_kind="connections_count",
        )

    def recent_connections(self, limit: int = 3) -> CatalogQuery:
        return CatalogQuery(
            key=f"connections:recent:{limit}",
            request=TableRequest(
                "connections",
                columns="id, requester_id, addressee_id, status, created_at",
                filters={"status": "accepted"},
                order_by="created_at",
                descending=True,
                limit=limit,
            ),
            resource_kind="connections",
            sort_key="created_at",
            descending=True,
        )

    def announcements(self, limit: Optional[int] = None) -> CatalogQuery:
        return CatalogQuery(
            key="announcements" if limit is None else f"announcements:{limit}",
            request=TableRequest(
                "announcements", order_by="created_at", descending=True, limit=limit
            ),
            resource_kind="announcements",
            sort_key="created_at",
            descending=True,
        )

    def connection_test(self) -> CatalogQuery:
        return CatalogQuery(
            key="connection_test",
            request=TableRequest("profiles", count_only=True, limit=1),
            resource_kind="connection_test",
            policy=CONNECTION_TEST_POLICY,
        )

    def operation(self, query: CatalogQuery) -> RemoteOperation:
        """Operation factory issuing the query's read."""
        return lambda: self.backend.fetch(query.request)

    def run(
        self,
        client: QueryClient,
        query: CatalogQuery,
        live: bool = False,
        filter: Optional[str] = None,
        **options: Any,
    ) -> QueryController:
        """Start a catalog query on a client.

        Args:
            client: Query client
            query: Catalog entry
            live: Merge change events for the query's table into the result
            filter: Change feed filter when live
            **options: Extra QueryClient.run options

        Returns:
            The query's controller
        """
        reconcile = None
        if live:
            if query.request.count_only:
                logger.warning(f"Ignoring live=True for count query {query.key}")
            else:
                reconcile = ReconcileSpec(
                    source=self.backend,
                    collection=query.request.table,
                    filter=filter,
                    sort_key=query.sort_key,
                    descending=query.descending,
                    filters=dict(query.request.filters),
                    limit=query.request.limit,
                )
        return client.run(
            query.key,
            self.operation(query),
            query.policy,
            resource_kind=query.resource_kind,
            reconcile=reconcile,
            **options,
        )
