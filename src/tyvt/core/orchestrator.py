"""
Batch Orchestrator - Governed, credential-rotated processing of work items.

For every item, in input order:
1. Take the active credential from the rotator
2. Ask the governor to pace and admit the request
3. Delegate the remote call to the query collaborator
4. Record a success or a failure and move on

Per-item failures never abort the batch. After the last item the batch is a
failure only when more than half of the items failed.

Design Pattern: Producer-Consumer + Observer
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import structlog

from .errors import (
    OrchestratorError,
    QueryError,
    QuotaExceededError,
    ScanCancelledError,
    ThresholdExceededError,
)
from .governor import Governor
from .rotator import CredentialRotator


# (cancel_event, credential, item) -> payload; raises on failure
QueryFunc = Callable[[Optional[asyncio.Event], str, str], Awaitable[Any]]

PROGRESS_LOG_EVERY = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchState(Enum):
    """Orchestrator lifecycle state"""
    IDLE = "idle"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED_SUCCESS = "completed_success"
    COMPLETED_FAILURE = "completed_failure"


class BatchVerdict(Enum):
    """Overall result of a finished batch"""
    COMPLETED = "completed"
    THRESHOLD_FAILED = "threshold_failed"
    CANCELLED = "cancelled"


@dataclass
class ItemResult:
    """Outcome of a single work item"""
    item: str
    payload: Any = None
    error: Optional[Exception] = None
    completed_at: datetime = field(default_factory=_utcnow)

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class BatchOutcome:
    """Ordered per-item results plus the batch verdict"""
    results: List[ItemResult]
    verdict: BatchVerdict
    batch_id: str = ""
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successes(self) -> List[ItemResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failures(self) -> List[ItemResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def failure_count(self) -> int:
        return len(self.failures)


def exceeds_failure_threshold(failure_count: int, total: int) -> bool:
    """More than half failed (integer division, strict)"""
    return failure_count > total // 2


class BatchOrchestrator:
    """
    Drives a batch of items through the governor and the query collaborator.

    An orchestrator runs exactly one batch. With max_workers > 1, items are
    consumed from a shared queue by several workers; every worker goes
    through the same Governor and CredentialRotator handles, so pacing and
    quotas stay global.

    Example:
        >>> orchestrator = BatchOrchestrator(governor, rotator, query)
        >>> outcome = await orchestrator.run(["example.com"], cancel_event)
    """

    def __init__(
        self,
        governor: Governor,
        rotator: CredentialRotator,
        query: QueryFunc,
        max_workers: int = 1,
    ):
        """
        Initialize the orchestrator.

        Args:
            governor: Shared pacing/quota tracker
            rotator: Source of the active credential
            query: Collaborator performing the remote call
            max_workers: Number of concurrent workers (1 = strictly sequential)
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.governor = governor
        self.rotator = rotator
        self.query = query
        self.max_workers = max_workers

        # State tracking
        self.state = BatchState.IDLE
        self.batch_id: Optional[str] = None
        self.total = 0
        self.processed = 0
        self.failure_count = 0
        self.verdict: Optional[BatchVerdict] = None
        self._cancelled = False

        # Structured logging
        self.logger = structlog.get_logger(__name__)

        # Observer pattern - callbacks
        self.observers: List[Callable[[str, Dict[str, Any]], None]] = []

    def subscribe(self, observer: Callable[[str, Dict[str, Any]], None]):
        """
        Subscribe to orchestrator events.

        Args:
            observer: Callback receiving (event, data)
        """
        self.observers.append(observer)
        self.logger.debug("observer_subscribed", observer=getattr(observer, "__name__", repr(observer)))

    def _notify_observers(self, event: str, data: Dict[str, Any]):
        """Notify all observers of an event"""
        for observer in self.observers:
            try:
                observer(event, data)
            except Exception as e:
                self.logger.error(
                    "observer_error",
                    observer=getattr(observer, "__name__", repr(observer)),
                    error=str(e),
                )

    async def run(
        self,
        items: Iterable[str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchOutcome:
        """
        Process all items and compute the batch verdict.

        Args:
            items: Work items, processed in this order
            cancel_event: Polled before each item; also interrupts pacing waits

        Returns:
            BatchOutcome with verdict COMPLETED

        Raises:
            ScanCancelledError: Cancel signal observed; partial results are discarded
            ThresholdExceededError: More than half of the items failed; carries the outcome
            OrchestratorError: Reused orchestrator or no credential available
        """
        if self.state is not BatchState.IDLE:
            raise OrchestratorError(f"orchestrator already used (state={self.state.value})")

        if self.rotator.current_credential() is None:
            raise OrchestratorError("no API key available")

        items = list(items)
        started_at = _utcnow()
        self.batch_id = f"batch_{started_at.strftime('%Y%m%d_%H%M%S')}"
        self.total = len(items)
        self.state = BatchState.RUNNING

        self.logger.info(
            "batch_started",
            batch_id=self.batch_id,
            total=self.total,
            keys=self.rotator.get_key_count(),
            workers=self.max_workers,
        )
        self._notify_observers("batch_started", {"batch_id": self.batch_id, "total": self.total})

        slots: List[Optional[ItemResult]] = [None] * len(items)

        try:
            if self.max_workers == 1:
                for index, item in enumerate(items):
                    self._raise_if_cancelled(cancel_event)
                    slots[index] = await self._process_item(index, item, cancel_event)
            else:
                await self._run_pool(items, slots, cancel_event)
        except ScanCancelledError:
            self.state = BatchState.CANCELLED
            self.verdict = BatchVerdict.CANCELLED
            self.logger.error(
                "batch_cancelled",
                batch_id=self.batch_id,
                processed=self.processed,
                total=self.total,
            )
            self._notify_observers(
                "batch_cancelled",
                {"batch_id": self.batch_id, "processed": self.processed, "total": self.total},
            )
            raise

        outcome = BatchOutcome(
            results=slots,
            verdict=BatchVerdict.COMPLETED,
            batch_id=self.batch_id,
            started_at=started_at,
            finished_at=_utcnow(),
        )
        return self._conclude(outcome)

    def _conclude(self, outcome: BatchOutcome) -> BatchOutcome:
        failure_count = outcome.failure_count
        success_rate = (outcome.total - failure_count) / outcome.total * 100 if outcome.total else 100.0

        self.logger.info(
            "batch_completed",
            batch_id=self.batch_id,
            successful=outcome.total - failure_count,
            success_rate=f"{success_rate:.1f}%",
            errors=failure_count,
        )

        if exceeds_failure_threshold(failure_count, outcome.total):
            self.state = BatchState.COMPLETED_FAILURE
            outcome.verdict = BatchVerdict.THRESHOLD_FAILED
            self.verdict = outcome.verdict
            error = ThresholdExceededError(failure_count, outcome.total, outcome)
            self.logger.error("batch_failed", batch_id=self.batch_id, error=str(error))
            self._notify_observers("batch_finished", {"batch_id": self.batch_id, "verdict": outcome.verdict.value})
            raise error

        self.state = BatchState.COMPLETED_SUCCESS
        self.verdict = outcome.verdict
        if failure_count:
            self.logger.warning(
                "batch_completed_with_errors",
                batch_id=self.batch_id,
                errors=failure_count,
                total=outcome.total,
            )
        self._notify_observers("batch_finished", {"batch_id": self.batch_id, "verdict": outcome.verdict.value})
        return outcome

    def _raise_if_cancelled(self, cancel_event: Optional[asyncio.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelledError("batch interrupted by cancellation signal")

    async def _run_pool(
        self,
        items: List[str],
        slots: List[Optional[ItemResult]],
        cancel_event: Optional[asyncio.Event],
    ):
        queue: asyncio.Queue = asyncio.Queue()
        for index, item in enumerate(items):
            queue.put_nowait((index, item))

        async def worker(worker_id: int):
            self.logger.debug("worker_started", worker_id=worker_id)
            while not self._cancelled:
                try:
                    index, item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    break

                try:
                    self._raise_if_cancelled(cancel_event)
                    slots[index] = await self._process_item(index, item, cancel_event)
                except ScanCancelledError:
                    self._cancelled = True
                finally:
                    queue.task_done()

        async with asyncio.TaskGroup() as tg:
            for worker_id in range(min(self.max_workers, len(items))):
                tg.create_task(worker(worker_id))

        if self._cancelled:
            raise ScanCancelledError("batch interrupted by cancellation signal")

    async def _process_item(
        self,
        index: int,
        item: str,
        cancel_event: Optional[asyncio.Event],
    ) -> ItemResult:
        credential = self.rotator.current_credential()
        self.logger.info("item_started", position=f"{index + 1}/{self.total}", item=item)

        try:
            await self.governor.wait(credential, cancel_event)
            # cancel may have landed while queued behind another worker
            self._raise_if_cancelled(cancel_event)
            payload = await self.query(cancel_event, credential, item)
        except ScanCancelledError:
            raise
        except QuotaExceededError as e:
            result = ItemResult(item=item, error=e)
            self.logger.warning("item_quota_exceeded", item=item, scope=e.scope.value, error=str(e))
        except Exception as e:
            result = ItemResult(item=item, error=QueryError(item, e))
            self.logger.warning("item_failed", item=item, error=str(e))
        else:
            result = ItemResult(item=item, payload=payload)
            self.logger.info("item_succeeded", item=item)

        self.processed += 1
        if not result.succeeded:
            self.failure_count += 1

        if self.processed % PROGRESS_LOG_EVERY == 0:
            self.logger.info(
                "batch_progress",
                processed=self.processed,
                total=self.total,
                successful=self.processed - self.failure_count,
                errors=self.failure_count,
            )

        self._notify_observers(
            "item_completed",
            {
                "item": item,
                "index": index,
                "succeeded": result.succeeded,
                "processed": self.processed,
                "total": self.total,
            },
        )
        return result

    def get_status(self) -> Dict[str, Any]:
        """
        Get current orchestrator status.

        Returns:
            Status dictionary
        """
        return {
            "batch_id": self.batch_id,
            "state": self.state.value,
            "verdict": self.verdict.value if self.verdict else None,
            "processed": self.processed,
            "total": self.total,
            "failures": self.failure_count,
            "workers": self.max_workers,
        }
