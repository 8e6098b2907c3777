"""Pytest configuration and fixtures for socialdata tests."""

import asyncio
import pytest
from typing import Any

from socialdata.monitoring import reset_metrics
from socialdata.realtime import InMemoryBackend
from socialdata.resilience import AttemptPolicy, ResilientExecutor


class RecordingSleep:
    """Backoff sleep that records requested delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)

    @property
    def total(self) -> float:
        return sum(self.delays)


class FlakyOperation:
    """Operation factory that fails with the given errors, then returns data."""

    def __init__(self, *failures: Any, data: Any = "ok"):
        self.failures = list(failures)
        self.data = data
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self._run()

    async def _run(self):
        await asyncio.sleep(0)
        if self.failures:
            raise self.failures.pop(0)
        return self.data


@pytest.fixture(autouse=True)
def use_test_environment(monkeypatch):
    """Ensure all tests use test environment variables."""
    monkeypatch.setenv("SOCIALDATA_BACKEND_URL", "http://localhost:54321")
    monkeypatch.setenv("SOCIALDATA_BACKEND_ANON_KEY", "test-anon-key")


@pytest.fixture(autouse=True)
def clean_metrics():
    """Start every test from empty metrics."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def executor(recording_sleep):
    """Executor whose backoff sleeps are recorded, not awaited."""
    return ResilientExecutor(sleep=recording_sleep)


@pytest.fixture
def fast_policy():
    return AttemptPolicy(max_attempts=3, base_delay_ms=100, hard_timeout_ms=500)


@pytest.fixture
def backend():
    return InMemoryBackend(
        {
            "profiles": [
                {"id": 1, "full_name": "Grace Hopper", "graduation_year": 1934},
                {"id": 2, "full_name": "Ada Lovelace", "graduation_year": 1835},
            ],
            "connections": [
                {"id": 10, "requester_id": 1, "addressee_id": 2, "status": "accepted",
                 "created_at": "2024-05-01T10:00:00Z"},
                {"id": 11, "requester_id": 2, "addressee_id": 3, "status": "pending",
                 "created_at": "2024-05-02T10:00:00Z"},
                {"id": 12, "requester_id": 3, "addressee_id": 1, "status": "accepted",
                 "created_at": "2024-05-03T10:00:00Z"},
            ],
        }
    )
