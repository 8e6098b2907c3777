"""Example script demonstrating socialdata against the in-memory backend."""

import asyncio
import logging

from socialdata import AttemptPolicy, QueryClient
from socialdata.monitoring import generate_metrics
from socialdata.queries import QueryCatalog
from socialdata.realtime import InMemoryBackend

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Run a short demonstration of queries, fallbacks and live updates."""

    logger.info("=" * 60)
    logger.info("socialdata resilient data layer")
    logger.info("=" * 60)

    backend = InMemoryBackend(
        {
            "profiles": [
                {"id": 1, "full_name": "Grace Hopper"},
                {"id": 2, "full_name": "Ada Lovelace"},
            ],
            "connections": [
                {"id": 10, "requester_id": 1, "addressee_id": 2, "status": "accepted",
                 "created_at": "2024-05-01T10:00:00Z"},
            ],
        },
        latency=0.01,
    )
    client = QueryClient()
    catalog = QueryCatalog(backend)
    fast = AttemptPolicy(max_attempts=3, base_delay_ms=50, hard_timeout_ms=500)

    # Live query: change events are merged into the held rows
    profiles = catalog.run(client, catalog.profiles(), live=True, max_attempts=3)
    profiles.subscribe(
        lambda r: logger.info(f"profiles [{r.state.value}] {[p['full_name'] for p in r.data or []]}")
    )
    await profiles.run()

    await client.mutate(
        lambda: backend.insert("profiles", {"id": 3, "full_name": "Alan Turing"}),
        resource_kind="profiles",
    )

    # Transient failures are retried, then succeed
    backend.fail_next({"code": "53300", "message": "too many connections"})
    count = await client.fetch(
        "connections:count",
        catalog.operation(catalog.connections_count()),
        fast,
        resource_kind="connections_count",
    )
    logger.info(f"Connections: {count.data} (fallback={count.served_from_fallback})")

    # Exhausted retries serve the fallback table
    backend.fail_next(*[{"status": 503, "message": "service unavailable"}] * 3)
    announcements = await client.fetch(
        "announcements",
        catalog.operation(catalog.announcements()),
        fast,
        resource_kind="announcements",
    )
    logger.info(f"Announcements fallback: {announcements.data} ({announcements.error.user_message})")

    client.close()
    logger.info("-" * 60)
    logger.info(generate_metrics())


if __name__ == "__main__":
    asyncio.run(main())
