"""
Unit tests for BatchOrchestrator module.

Run with: pytest tests/unit/test_orchestrator.py -v
"""

import asyncio
from datetime import timedelta

import pytest

from tyvt.core.errors import (
    OrchestratorError,
    QueryError,
    QuotaExceededError,
    ScanCancelledError,
    ThresholdExceededError,
)
from tyvt.core.governor import Governor, GovernorConfig
from tyvt.core.orchestrator import (
    BatchOrchestrator,
    BatchState,
    BatchVerdict,
    exceeds_failure_threshold,
)
from tyvt.core.rotator import CredentialRotator


class RecordingQuery:
    """Query collaborator that fails for chosen items and records every call"""

    def __init__(self, failing=(), on_call=None):
        self.failing = set(failing)
        self.on_call = on_call
        self.calls = []

    async def __call__(self, cancel_event, credential, item):
        self.calls.append((credential, item))
        if self.on_call is not None:
            self.on_call(item, cancel_event)
        await asyncio.sleep(0)
        if item in self.failing:
            raise RuntimeError(f"API returned status 500 for {item}")
        return {"domain": item, "key": credential}


class CancellingGovernor(Governor):
    """Governor that admits the request and then raises the cancel signal"""

    def __init__(self, cancel_event):
        super().__init__(GovernorConfig(min_interval=0.0))
        self.cancel_event = cancel_event

    async def wait(self, credential, cancel_event=None):
        await super().wait(credential, cancel_event)
        self.cancel_event.set()


def items(count):
    return [f"domain{i}.com" for i in range(1, count + 1)]


def make_orchestrator(query, keys=("key-aaaa", "key-bbbb"), min_interval=0.0, max_workers=1, **limits):
    governor = Governor(GovernorConfig(min_interval=min_interval, **limits))
    rotator = CredentialRotator(list(keys), rotation_interval=60.0)
    return BatchOrchestrator(governor, rotator, query, max_workers=max_workers)


class TestBatchOrchestrator:
    """Test suite for BatchOrchestrator class"""

    def test_orchestrator_initialization(self):
        """Test orchestrator initializes correctly"""
        orchestrator = make_orchestrator(RecordingQuery(), max_workers=2)

        assert orchestrator.state is BatchState.IDLE
        assert orchestrator.max_workers == 2
        assert orchestrator.batch_id is None
        assert orchestrator.processed == 0
        assert orchestrator.verdict is None
        assert orchestrator.get_status()["verdict"] is None

    def test_invalid_worker_count(self):
        """Test zero workers is rejected"""
        with pytest.raises(ValueError):
            make_orchestrator(RecordingQuery(), max_workers=0)

    @pytest.mark.parametrize(
        "failures,total,expected",
        [(5, 10, False), (6, 10, True), (2, 3, True), (1, 3, False), (0, 0, False), (1, 1, True)],
    )
    def test_failure_threshold(self, failures, total, expected):
        """Test the strict more-than-half rule with integer division"""
        assert exceeds_failure_threshold(failures, total) is expected

    @pytest.mark.asyncio
    async def test_all_items_succeed(self):
        """Test a clean batch returns every payload in input order"""
        query = RecordingQuery()
        orchestrator = make_orchestrator(query)

        outcome = await orchestrator.run(items(4))

        assert outcome.verdict is BatchVerdict.COMPLETED
        assert [r.item for r in outcome.results] == items(4)
        assert [r.payload["domain"] for r in outcome.successes] == items(4)
        assert orchestrator.state is BatchState.COMPLETED_SUCCESS

    @pytest.mark.asyncio
    async def test_half_failed_is_success(self):
        """Test 5 failures out of 10 still completes successfully"""
        batch = items(10)
        query = RecordingQuery(failing=batch[::2])
        orchestrator = make_orchestrator(query)

        outcome = await orchestrator.run(batch)

        assert outcome.verdict is BatchVerdict.COMPLETED
        assert outcome.failure_count == 5
        assert outcome.total == 10
        assert orchestrator.state is BatchState.COMPLETED_SUCCESS

    @pytest.mark.asyncio
    async def test_more_than_half_failed(self):
        """Test 6 failures out of 10 raises a threshold failure carrying the outcome"""
        batch = items(10)
        query = RecordingQuery(failing=batch[:6])
        orchestrator = make_orchestrator(query)

        with pytest.raises(ThresholdExceededError) as excinfo:
            await orchestrator.run(batch)

        error = excinfo.value
        assert error.failure_count == 6
        assert error.total == 10
        assert error.outcome.verdict is BatchVerdict.THRESHOLD_FAILED
        assert orchestrator.verdict is BatchVerdict.THRESHOLD_FAILED
        assert [r.item for r in error.outcome.successes] == batch[6:]
        assert orchestrator.state is BatchState.COMPLETED_FAILURE

    @pytest.mark.asyncio
    async def test_small_batch_thresholds(self):
        """Test 2 of 3 failing is a failure and 1 of 3 is a success"""
        batch = items(3)

        with pytest.raises(ThresholdExceededError):
            await make_orchestrator(RecordingQuery(failing=batch[:2])).run(batch)

        outcome = await make_orchestrator(RecordingQuery(failing=batch[:1])).run(batch)
        assert outcome.verdict is BatchVerdict.COMPLETED
        assert outcome.failure_count == 1

    @pytest.mark.asyncio
    async def test_failures_are_wrapped_with_item(self):
        """Test query failures become QueryError with item and cause"""
        query = RecordingQuery(failing={"domain2.com"})
        outcome = await make_orchestrator(query).run(items(3))

        failure = outcome.failures[0]
        assert failure.item == "domain2.com"
        assert isinstance(failure.error, QueryError)
        assert failure.error.item == "domain2.com"
        assert isinstance(failure.error.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_cancel_before_third_item(self):
        """Test cancelling before item 3 of 5 never queries items 3-5"""
        cancel_event = asyncio.Event()
        batch = items(5)

        def cancel_after_second(item, _event):
            if item == batch[1]:
                cancel_event.set()

        query = RecordingQuery(on_call=cancel_after_second)
        orchestrator = make_orchestrator(query)

        with pytest.raises(ScanCancelledError):
            await orchestrator.run(batch, cancel_event)

        assert [item for _, item in query.calls] == batch[:2]
        assert orchestrator.state is BatchState.CANCELLED
        assert orchestrator.verdict is BatchVerdict.CANCELLED
        assert orchestrator.get_status()["verdict"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_during_pacing_wait(self):
        """Test cancellation interrupts the governor's pacing sleep"""
        cancel_event = asyncio.Event()
        query = RecordingQuery()
        orchestrator = make_orchestrator(query, min_interval=5.0)
        asyncio.get_running_loop().call_later(0.05, cancel_event.set)

        with pytest.raises(ScanCancelledError):
            await asyncio.wait_for(orchestrator.run(items(3), cancel_event), timeout=2.0)

        assert [item for _, item in query.calls] == ["domain1.com"]
        assert orchestrator.state is BatchState.CANCELLED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_workers", [1, 2])
    async def test_cancel_while_waiting_for_admission(self, max_workers):
        """Test a cancel that arrives during admission stops the query from being sent"""
        cancel_event = asyncio.Event()
        query = RecordingQuery()
        orchestrator = make_orchestrator(query, max_workers=max_workers)
        orchestrator.governor = CancellingGovernor(cancel_event)

        with pytest.raises(ScanCancelledError):
            await orchestrator.run(items(3), cancel_event)

        assert query.calls == []
        assert orchestrator.state is BatchState.CANCELLED
        assert orchestrator.verdict is BatchVerdict.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        """Test a pre-set cancel signal processes nothing"""
        cancel_event = asyncio.Event()
        cancel_event.set()
        query = RecordingQuery()
        orchestrator = make_orchestrator(query)

        with pytest.raises(ScanCancelledError):
            await orchestrator.run(items(3), cancel_event)

        assert query.calls == []

    @pytest.mark.asyncio
    async def test_quota_rejections_are_item_failures(self):
        """Test quota exhaustion is recorded per item and does not abort the batch"""
        query = RecordingQuery()
        orchestrator = make_orchestrator(query, keys=("only-key",), daily_limit=2)

        outcome = await orchestrator.run(items(4))

        assert outcome.failure_count == 2
        assert all(isinstance(r.error, QuotaExceededError) for r in outcome.failures)
        assert [r.item for r in outcome.failures] == ["domain3.com", "domain4.com"]
        assert len(query.calls) == 2

    @pytest.mark.asyncio
    async def test_uses_current_credential(self):
        """Test each item is queried with the rotator's active key"""
        query = RecordingQuery()
        orchestrator = make_orchestrator(query)

        def rotate(event, data):
            if event == "item_completed":
                orchestrator.rotator.rotate_credential()

        orchestrator.subscribe(rotate)
        await orchestrator.run(items(3))

        assert [key for key, _ in query.calls] == ["key-aaaa", "key-bbbb", "key-aaaa"]
        assert orchestrator.governor.get_quota_status("key-aaaa") == (2, 2)
        assert orchestrator.governor.get_quota_status("key-bbbb") == (1, 1)

    @pytest.mark.asyncio
    async def test_no_credentials_is_fatal(self):
        """Test an empty key list fails before any item"""
        query = RecordingQuery()
        orchestrator = make_orchestrator(query, keys=())

        with pytest.raises(OrchestratorError):
            await orchestrator.run(items(2))

        assert query.calls == []

    @pytest.mark.asyncio
    async def test_orchestrator_runs_once(self):
        """Test a finished orchestrator refuses a second batch"""
        orchestrator = make_orchestrator(RecordingQuery())
        await orchestrator.run(items(1))

        with pytest.raises(OrchestratorError):
            await orchestrator.run(items(1))

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        """Test an empty batch completes successfully"""
        outcome = await make_orchestrator(RecordingQuery()).run([])

        assert outcome.verdict is BatchVerdict.COMPLETED
        assert outcome.total == 0

    @pytest.mark.asyncio
    async def test_observer_pattern(self):
        """Test observers receive lifecycle events and faulty observers are isolated"""
        orchestrator = make_orchestrator(RecordingQuery())
        events_received = []

        def test_observer(event, data):
            events_received.append((event, data))

        def broken_observer(event, data):
            raise RuntimeError("observer bug")

        orchestrator.subscribe(broken_observer)
        orchestrator.subscribe(test_observer)
        await orchestrator.run(items(2))

        names = [event for event, _ in events_received]
        assert names == ["batch_started", "item_completed", "item_completed", "batch_finished"]
        assert events_received[2][1]["processed"] == 2
        assert events_received[-1][1]["verdict"] == "completed"

    @pytest.mark.asyncio
    async def test_timestamps_are_utc(self):
        """Test batch and item timestamps are timezone-aware UTC"""
        outcome = await make_orchestrator(RecordingQuery()).run(items(2))

        assert outcome.started_at.utcoffset() == timedelta(0)
        assert outcome.finished_at.utcoffset() == timedelta(0)
        assert all(r.completed_at.utcoffset() == timedelta(0) for r in outcome.results)
        assert outcome.finished_at >= outcome.started_at

    @pytest.mark.asyncio
    async def test_get_status(self):
        """Test status reporting"""
        orchestrator = make_orchestrator(RecordingQuery(failing={"domain1.com"}))
        await orchestrator.run(items(3))

        status = orchestrator.get_status()

        assert status["state"] == "completed_success"
        assert status["verdict"] == "completed"
        assert status["processed"] == 3
        assert status["total"] == 3
        assert status["failures"] == 1

    @pytest.mark.asyncio
    async def test_worker_pool_keeps_order_and_shares_governor(self):
        """Test pooled workers keep input order and count against one governor"""
        query = RecordingQuery(failing={"domain4.com"})
        orchestrator = make_orchestrator(query, keys=("only-key",), max_workers=3)

        outcome = await orchestrator.run(items(9))

        assert [r.item for r in outcome.results] == items(9)
        assert outcome.failure_count == 1
        assert orchestrator.governor.get_quota_status("only-key") == (9, 9)
        assert len(query.calls) == 9

    @pytest.mark.asyncio
    async def test_worker_pool_respects_quota(self):
        """Test concurrent workers cannot exceed a key's ceiling"""
        query = RecordingQuery()
        orchestrator = make_orchestrator(query, keys=("only-key",), max_workers=4, daily_limit=5)

        outcome = await orchestrator.run(items(8))

        assert outcome.failure_count == 3
        assert len(query.calls) == 5
        assert orchestrator.governor.get_quota_status("only-key") == (5, 5)

    @pytest.mark.asyncio
    async def test_worker_pool_cancellation(self):
        """Test cancelling a pooled batch stops remaining items"""
        cancel_event = asyncio.Event()

        def cancel_on_third(item, _event):
            if item == "domain3.com":
                cancel_event.set()

        query = RecordingQuery(on_call=cancel_on_third)
        orchestrator = make_orchestrator(query, min_interval=0.01, max_workers=2)

        with pytest.raises(ScanCancelledError):
            await orchestrator.run(items(10), cancel_event)

        assert len(query.calls) < 10
        assert orchestrator.state is BatchState.CANCELLED

    def test_enum_values(self):
        """Test state and verdict enum values"""
        assert BatchState.IDLE.value == "idle"
        assert BatchState.RUNNING.value == "running"
        assert BatchState.CANCELLED.value == "cancelled"
        assert BatchVerdict.COMPLETED.value == "completed"
        assert BatchVerdict.THRESHOLD_FAILED.value == "threshold_failed"
        assert BatchVerdict.CANCELLED.value == "cancelled"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
