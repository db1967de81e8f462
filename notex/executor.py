"""
Bounded, retrying task executor.

Runs a batch of independent tasks with at most K in flight. Tasks that
fail with a retryable OracleError are re-queued with exponential backoff
(base * 2^(retries-1), capped) until they have been retried R times;
the next failure finalizes them. Non-retryable failures finalize at once.
One task's failure never affects another.

Retried tasks go back on a ready-time heap instead of sleeping inside a
worker, so a backoff never holds one of the K slots.

Cancellation stops dequeuing: queued tasks finalize as cancelled while
tasks already running are allowed to finish.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Hashable, Iterable, Optional, TypeVar

from .errors import OracleError, TaskCancelledError, TransientOracleError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Poll interval while the caller waits, so KeyboardInterrupt is delivered
_WAIT_SLICE = 0.2


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class Task(Generic[T]):
    """
    A unit of work for the executor.

    Attributes:
        key: Identifier used to address the outcome
        call: Zero-argument callable performing one attempt
        retries: Number of retries so far (0 on the first attempt)
        last_error: Most recent failure
    """
    key: Hashable
    call: Callable[[], T]
    retries: int = 0
    last_error: Optional[BaseException] = None
    state: TaskState = TaskState.PENDING


@dataclass
class TaskOutcome(Generic[T]):
    """Terminal result of a task: a value or the last error."""
    key: Hashable
    result: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchStats:
    """Counters for one run_all call."""
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    retries: int = 0
    cancelled: int = 0
    max_in_flight: int = 0


class BoundedExecutor:
    """
    Concurrency-limited task runner shared by every pass of a run.

    Args:
        concurrency: Maximum tasks running at once (K)
        max_retries: Retries allowed per task after the first attempt (R)
        backoff_base: First retry delay in seconds
        backoff_max: Cap on any single retry delay
        cancel_event: Shared event that stops new work when set
    """

    def __init__(
        self,
        concurrency: int = 8,
        max_retries: int = 3,
        *,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        cancel_event: Optional[threading.Event] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._cancel = cancel_event or threading.Event()
        self.last_stats = BatchStats()

    # -- cancellation ------------------------------------------------------

    def cancel(self) -> None:
        """Stop starting new tasks. Running tasks finish normally."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # -- execution ---------------------------------------------------------

    def backoff_delay(self, retries: int, error: BaseException | None = None) -> float:
        """Delay before retry number ``retries`` (1-based)."""
        delay = min(self.backoff_base * (2 ** (retries - 1)), self.backoff_max)
        if isinstance(error, TransientOracleError) and error.retry_after:
            delay = max(delay, error.retry_after)
        return delay

    def run_all(
        self,
        tasks: Iterable[Task[T]],
        *,
        label: str = "tasks",
        on_done: Optional[Callable[[TaskOutcome[T]], None]] = None,
    ) -> dict[Hashable, TaskOutcome[T]]:
        """
        Run every task to a terminal state.

        Args:
            tasks: Tasks with unique keys
            label: Name used in log messages
            on_done: Called (from a worker thread) as each task finalizes

        Returns:
            Outcomes keyed by task key, in submission order.

        Raises:
            ValueError: on duplicate task keys
            KeyboardInterrupt: re-raised after in-flight tasks finish
        """
        task_list = list(tasks)
        outcomes: dict[Hashable, Optional[TaskOutcome[T]]] = {}
        for task in task_list:
            if task.key in outcomes:
                raise ValueError(f"Duplicate task key: {task.key!r}")
            outcomes[task.key] = None

        stats = BatchStats(submitted=len(task_list))
        self.last_stats = stats
        if not task_list:
            return {}

        seq = itertools.count()
        # (ready_at, seq, task)
        heap: list[tuple[float, int, Task[T]]] = [
            (0.0, next(seq), task) for task in task_list
        ]
        heapq.heapify(heap)
        cond = threading.Condition()
        state = {"in_flight": 0, "remaining": len(task_list)}

        def finalize(task: Task[T], outcome: TaskOutcome[T]) -> None:
            # Caller holds cond
            outcomes[task.key] = outcome
            state["remaining"] -= 1
            if outcome.ok:
                task.state = TaskState.SUCCEEDED
                stats.succeeded += 1
            else:
                task.state = TaskState.FAILED
                stats.failed += 1
            if on_done is not None:
                try:
                    on_done(outcome)
                except Exception as e:
                    logger.warning("Outcome callback failed for %s: %s", task.key, e)
            cond.notify_all()

        def drain_cancelled() -> None:
            # Caller holds cond
            while heap:
                _, _, task = heapq.heappop(heap)
                stats.cancelled += 1
                finalize(task, TaskOutcome(
                    task.key,
                    error=TaskCancelledError(f"{label}: run cancelled"),
                    attempts=task.retries,
                ))

        def next_task() -> Optional[Task[T]]:
            with cond:
                while True:
                    if self._cancel.is_set():
                        drain_cancelled()
                    if state["remaining"] == 0:
                        return None
                    if not heap:
                        # Others are running; one may be re-queued
                        cond.wait()
                        continue
                    ready_at = heap[0][0]
                    now = time.monotonic()
                    if ready_at > now:
                        cond.wait(timeout=ready_at - now)
                        continue
                    _, _, task = heapq.heappop(heap)
                    task.state = TaskState.RUNNING
                    state["in_flight"] += 1
                    stats.max_in_flight = max(stats.max_in_flight, state["in_flight"])
                    return task

        def worker() -> None:
            while True:
                task = next_task()
                if task is None:
                    return
                attempt = task.retries + 1
                try:
                    result = task.call()
                except Exception as e:
                    error: Optional[Exception] = e
                else:
                    error = None

                with cond:
                    state["in_flight"] -= 1
                    if error is None:
                        finalize(task, TaskOutcome(task.key, result=result, attempts=attempt))
                        continue

                    task.last_error = error
                    retryable = isinstance(error, OracleError) and error.retryable
                    if retryable and task.retries < self.max_retries and not self._cancel.is_set():
                        task.retries += 1
                        stats.retries += 1
                        delay = self.backoff_delay(task.retries, error)
                        logger.info(
                            "%s: %s attempt %d failed, retrying in %.1fs: %s",
                            label, task.key, attempt, delay, error,
                        )
                        task.state = TaskState.PENDING
                        heapq.heappush(heap, (time.monotonic() + delay, next(seq), task))
                        cond.notify_all()
                        continue

                    if retryable:
                        logger.warning(
                            "%s: %s failed after %d attempts: %s",
                            label, task.key, attempt, error,
                        )
                    else:
                        logger.warning("%s: %s failed: %s", label, task.key, error)
                    finalize(task, TaskOutcome(task.key, error=error, attempts=attempt))

        n_workers = min(self.concurrency, len(task_list))
        threads = [
            threading.Thread(target=worker, name=f"notex-{label}-{i}", daemon=True)
            for i in range(n_workers)
        ]
        logger.debug("%s: running %d tasks on %d workers", label, len(task_list), n_workers)
        for t in threads:
            t.start()

        try:
            for t in threads:
                while t.is_alive():
                    t.join(_WAIT_SLICE)
        except KeyboardInterrupt:
            logger.warning("%s: interrupted, waiting for in-flight tasks", label)
            self.cancel()
            with cond:
                cond.notify_all()
            for t in threads:
                t.join()
            raise

        return {key: outcome for key, outcome in outcomes.items()}  # type: ignore[misc]


def outcome_counts(outcomes: dict[Any, TaskOutcome]) -> tuple[int, int]:
    """Return (succeeded, failed) for a batch."""
    ok = sum(1 for o in outcomes.values() if o.ok)
    return ok, len(outcomes) - ok
