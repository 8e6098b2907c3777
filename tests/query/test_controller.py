"""Tests for the query lifecycle controller."""

import asyncio
import pytest

from conftest import FlakyOperation
from socialdata.backend import RemoteError, TableRequest
from socialdata.query.controller import QueryController, QueryResult, QueryState, ReconcileSpec
from socialdata.resilience.errors import ErrorKind, classify
from socialdata.resilience.executor import Degraded, Success
from socialdata.resilience.retry import AttemptPolicy


class GatedOperation:
    """Operation factory whose calls block until released."""

    def __init__(self, data="ok"):
        self.data = data
        self.calls = 0
        self.gate = asyncio.Event()

    def __call__(self):
        self.calls += 1
        return self._run()

    async def _run(self):
        await self.gate.wait()
        return self.data


def make_controller(operation, executor, policy, **kwargs):
    kwargs.setdefault("resource_kind", "profiles")
    return QueryController("profiles", operation, executor=executor, policy=policy, **kwargs)


class TestQueryResult:
    """Test QueryResult."""

    def test_defaults(self):
        result = QueryResult()
        assert result.state == QueryState.IDLE
        assert result.data is None
        assert result.is_loading is False
        assert result.ok is False

    def test_from_success(self):
        result = QueryResult.from_outcome(Success(data=[1], attempts=2))
        assert result.state == QueryState.SUCCESS
        assert result.ok is True
        assert result.last_updated_at is not None

    def test_from_degraded(self):
        error = classify(RemoteError("busy", code="53300"))
        result = QueryResult.from_outcome(Degraded([], error, True, 3))
        assert result.state == QueryState.DEGRADED
        assert result.served_from_fallback is True
        assert result.error.kind == ErrorKind.REMOTE_OVERLOADED

    def test_snapshot_is_independent(self):
        result = QueryResult(data=[1])
        snap = result.snapshot()
        result.is_stale = True
        assert snap.is_stale is False


class TestRun:
    """Test execution and state transitions."""

    @pytest.mark.asyncio
    async def test_state_transitions(self, executor, fast_policy):
        controller = make_controller(FlakyOperation(data=[{"id": 1}]), executor, fast_policy)
        seen = []
        controller.subscribe(lambda r: seen.append(r.state))

        result = await controller.run()

        assert seen == [QueryState.IDLE, QueryState.PENDING, QueryState.SUCCESS]
        assert result.data == [{"id": 1}]
        assert controller.state == QueryState.SUCCESS

    @pytest.mark.asyncio
    async def test_degraded_on_permission_denied(self, executor, fast_policy):
        op = FlakyOperation(RemoteError("permission denied", code="42501"))
        controller = make_controller(op, executor, fast_policy)

        result = await controller.run()

        assert result.state == QueryState.DEGRADED
        assert result.error.kind == ErrorKind.PERMISSION_DENIED
        assert result.served_from_fallback is False
        assert result.data is None

    @pytest.mark.asyncio
    async def test_degraded_with_fallback(self, executor, fast_policy):
        op = FlakyOperation(*[RemoteError("too many connections", code="53300")] * 3)
        controller = make_controller(op, executor, fast_policy, resource_kind="stats")

        result = await controller.run()

        assert result.state == QueryState.DEGRADED
        assert result.served_from_fallback is True
        assert result.data["total_users"] == 4

    @pytest.mark.asyncio
    async def test_concurrent_runs_share_one_execution(self, executor, fast_policy):
        op = GatedOperation(data=["shared"])
        controller = make_controller(op, executor, fast_policy)

        first = asyncio.ensure_future(controller.run())
        second = asyncio.ensure_future(controller.run())
        await asyncio.sleep(0)
        op.gate.set()
        results = await asyncio.gather(first, second)

        assert op.calls == 1
        assert controller.executions == 1
        assert results[0].data == results[1].data == ["shared"]

    @pytest.mark.asyncio
    async def test_start_returns_inflight_task(self, executor, fast_policy):
        op = GatedOperation()
        controller = make_controller(op, executor, fast_policy)

        first = controller.start()
        assert controller.start() is first
        assert controller.start(force=True) is first

        op.gate.set()
        await first

    @pytest.mark.asyncio
    async def test_fresh_result_not_refetched(self, executor, fast_policy):
        op = FlakyOperation()
        controller = make_controller(op, executor, fast_policy)

        await controller.run()
        await controller.run()

        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_refetch_forces_execution(self, executor, fast_policy):
        op = FlakyOperation()
        controller = make_controller(op, executor, fast_policy)

        await controller.run()
        await controller.refetch()

        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_degraded_result_rerun(self, executor, fast_policy):
        op = FlakyOperation(RemoteError("nope", status=403), data="later")
        controller = make_controller(op, executor, fast_policy)

        await controller.run()
        result = await controller.run()

        assert result.state == QueryState.SUCCESS
        assert result.data == "later"

    @pytest.mark.asyncio
    async def test_caller_cancellation_does_not_cancel_execution(self, executor, fast_policy):
        op = GatedOperation(data="done")
        controller = make_controller(op, executor, fast_policy)

        waiter = asyncio.ensure_future(controller.run())
        await asyncio.sleep(0)
        waiter.cancel()
        op.gate.set()
        result = await controller.run()

        assert result.data == "done"
        assert op.calls == 1


class TestInvalidate:
    """Test invalidation."""

    @pytest.mark.asyncio
    async def test_invalidate_marks_stale_and_reruns(self, executor, fast_policy):
        op = FlakyOperation()
        controller = make_controller(op, executor, fast_policy)
        await controller.run()

        controller.invalidate()
        assert controller.result.is_stale is True

        result = await controller.run()
        assert op.calls == 2
        assert result.is_stale is False

    @pytest.mark.asyncio
    async def test_invalidate_publishes_once(self, executor, fast_policy):
        controller = make_controller(FlakyOperation(), executor, fast_policy)
        await controller.run()
        seen = []
        controller.subscribe(lambda r: seen.append(r.is_stale))

        controller.invalidate()
        controller.invalidate()

        assert seen == [False, True]


class TestSubscribe:
    """Test listeners."""

    @pytest.mark.asyncio
    async def test_unsubscribe(self, executor, fast_policy):
        controller = make_controller(FlakyOperation(), executor, fast_policy)
        seen = []
        unsubscribe = controller.subscribe(seen.append)
        unsubscribe()
        unsubscribe()

        await controller.run()
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_listener_errors_contained(self, executor, fast_policy):
        controller = make_controller(FlakyOperation(data="x"), executor, fast_policy)
        seen = []

        def broken(result):
            raise ValueError("render failed")

        controller.subscribe(broken)
        controller.subscribe(seen.append)
        result = await controller.run()

        assert result.data == "x"
        assert seen[-1].data == "x"

    @pytest.mark.asyncio
    async def test_listeners_get_snapshots(self, executor, fast_policy):
        controller = make_controller(FlakyOperation(data=[1]), executor, fast_policy)
        seen = []
        controller.subscribe(seen.append)
        await controller.run()

        seen[-1].state = QueryState.IDLE
        assert controller.state == QueryState.SUCCESS


class TestTeardown:
    """Test teardown."""

    @pytest.mark.asyncio
    async def test_teardown_discards_inflight_result(self, executor, fast_policy):
        op = GatedOperation(data="late")
        controller = make_controller(op, executor, fast_policy)
        seen = []
        controller.subscribe(lambda r: seen.append(r.state))

        task = controller.start()
        await asyncio.sleep(0)
        controller.teardown()
        op.gate.set()
        await task

        assert seen == [QueryState.IDLE, QueryState.PENDING]
        assert controller.result.data is None

    @pytest.mark.asyncio
    async def test_start_after_teardown_raises(self, executor, fast_policy):
        controller = make_controller(FlakyOperation(), executor, fast_policy)
        controller.teardown()
        controller.teardown()
        assert controller.torn_down is True
        with pytest.raises(RuntimeError):
            controller.start()


class TestReconciliation:
    """Test change-feed reconciliation."""

    def live_controller(self, backend, executor, fast_policy):
        return make_controller(
            lambda: backend.fetch(TableRequest("profiles", order_by="full_name")),
            executor,
            fast_policy,
            reconcile=ReconcileSpec(source=backend, collection="profiles", sort_key="full_name"),
        )

    @pytest.mark.asyncio
    async def test_feed_attached_after_first_success(self, backend, executor, fast_policy):
        controller = self.live_controller(backend, executor, fast_policy)
        assert backend.subscriber_count("profiles") == 0

        await controller.run()
        await controller.refetch()

        assert backend.subscriber_count("profiles") == 1
        assert controller.subscription.active is True

    @pytest.mark.asyncio
    async def test_insert_update_delete_merged(self, backend, executor, fast_policy):
        controller = self.live_controller(backend, executor, fast_policy)
        await controller.run()
        seen = []
        controller.subscribe(lambda r: seen.append([p["full_name"] for p in r.data]))

        await backend.insert("profiles", {"id": 3, "full_name": "Alan Turing"})
        await backend.update("profiles", 1, {"full_name": "Rear Admiral Grace Hopper"})
        await backend.delete("profiles", 2)

        assert seen == [
            ["Ada Lovelace", "Grace Hopper"],
            ["Ada Lovelace", "Alan Turing", "Grace Hopper"],
            ["Ada Lovelace", "Alan Turing", "Rear Admiral Grace Hopper"],
            ["Alan Turing", "Rear Admiral Grace Hopper"],
        ]
        assert controller.executions == 1

    @pytest.mark.asyncio
    async def test_redelivered_event_not_republished(self, backend, executor, fast_policy):
        controller = self.live_controller(backend, executor, fast_policy)
        await controller.run()
        payload = {"eventType": "UPDATE", "table": "profiles", "new": {"id": 1, "full_name": "Grace B. Hopper"}}
        seen = []
        controller.subscribe(seen.append)

        backend.publish("profiles", payload)
        backend.publish("profiles", payload)

        assert len(seen) == 2
        assert controller.result.data[1]["full_name"] == "Grace B. Hopper"

    @pytest.mark.asyncio
    async def test_event_during_refetch_kept(self, backend, executor, fast_policy):
        """An insert landing after the read snapshot survives the refetch."""
        read_taken = asyncio.Event()
        release = asyncio.Event()
        release.set()

        async def read():
            response = await backend.fetch(TableRequest("profiles", order_by="full_name"))
            read_taken.set()
            await release.wait()
            return response

        controller = make_controller(
            read,
            executor,
            fast_policy,
            reconcile=ReconcileSpec(source=backend, collection="profiles", sort_key="full_name"),
        )
        await controller.run()

        read_taken.clear()
        release.clear()
        pending = asyncio.ensure_future(controller.refetch())
        await read_taken.wait()
        await backend.insert("profiles", {"id": 3, "full_name": "Alan Turing"})
        release.set()
        result = await pending

        assert [p["id"] for p in result.data] == [2, 3, 1]
        assert [p["id"] for p in controller.result.data] == [2, 3, 1]

    @pytest.mark.asyncio
    async def test_delete_during_refetch_kept(self, backend, executor, fast_policy):
        read_taken = asyncio.Event()
        release = asyncio.Event()
        release.set()

        async def read():
            response = await backend.fetch(TableRequest("profiles"))
            read_taken.set()
            await release.wait()
            return response

        controller = make_controller(
            read,
            executor,
            fast_policy,
            reconcile=ReconcileSpec(source=backend, collection="profiles"),
        )
        await controller.run()

        read_taken.clear()
        release.clear()
        pending = asyncio.ensure_future(controller.refetch())
        await read_taken.wait()
        await backend.delete("profiles", 2)
        release.set()
        result = await pending

        assert [p["id"] for p in result.data] == [1]

    @pytest.mark.asyncio
    async def test_events_not_replayed_onto_later_reads(self, backend, executor, fast_policy):
        controller = self.live_controller(backend, executor, fast_policy)
        await controller.run()
        await backend.insert("profiles", {"id": 3, "full_name": "Alan Turing"})
        backend.tables["profiles"] = [r for r in backend.tables["profiles"] if r["id"] != 3]

        result = await controller.refetch()

        assert [p["id"] for p in result.data] == [2, 1]

    @pytest.mark.asyncio
    async def test_no_feed_after_failure(self, backend, executor, fast_policy):
        backend.fail_next({"code": "42501", "message": "permission denied"})
        controller = self.live_controller(backend, executor, fast_policy)

        await controller.run()

        assert controller.subscription is None
        assert backend.subscriber_count("profiles") == 0

    @pytest.mark.asyncio
    async def test_teardown_detaches_feed_once(self, backend, executor, fast_policy):
        controller = self.live_controller(backend, executor, fast_policy)
        await controller.run()
        handle = controller.subscription

        controller.teardown()
        controller.teardown()

        assert handle.active is False
        assert backend.subscriber_count("profiles") == 0

    @pytest.mark.asyncio
    async def test_feed_attach_failure_keeps_query_usable(self, executor, fast_policy):
        def broken_source(collection, filter):
            raise ConnectionError("socket closed")

        controller = make_controller(
            FlakyOperation(data=[{"id": 1}]),
            executor,
            fast_policy,
            reconcile=ReconcileSpec(source=broken_source, collection="profiles"),
        )
        result = await controller.run()

        assert result.state == QueryState.SUCCESS
        assert controller.subscription is None


class TestFocusRegain:
    """Test refetch on focus regain."""

    @pytest.mark.asyncio
    async def test_burst_of_regains_refetches_once(self, executor, fast_policy):
        op = FlakyOperation()
        controller = make_controller(
            op, executor, fast_policy,
            refetch_on_regain_focus=True, focus_window_s=0.01, focus_jitter_s=0,
        )
        await controller.run()

        controller.focus_regained()
        controller.focus_regained()
        controller.focus_regained()
        await asyncio.sleep(0.06)

        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, executor, fast_policy):
        op = FlakyOperation()
        controller = make_controller(op, executor, fast_policy, focus_window_s=0.01, focus_jitter_s=0)
        await controller.run()

        controller.focus_regained()
        await asyncio.sleep(0.04)

        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_teardown_cancels_pending_regain(self, executor, fast_policy):
        op = FlakyOperation()
        controller = make_controller(
            op, executor, fast_policy,
            refetch_on_regain_focus=True, focus_window_s=0.02, focus_jitter_s=0,
        )
        await controller.run()

        controller.focus_regained()
        controller.teardown()
        await asyncio.sleep(0.05)

        assert op.calls == 1


class TestPolicy:
    """Test policy wiring."""

    @pytest.mark.asyncio
    async def test_attempts_follow_policy(self, executor, recording_sleep):
        policy = AttemptPolicy(max_attempts=2, base_delay_ms=10, hard_timeout_ms=200)
        op = FlakyOperation(*[RemoteError("bad gateway", status=502)] * 5)
        controller = make_controller(op, executor, policy)

        await controller.run()

        assert op.calls == 2
        assert recording_sleep.delays == [0.01]
