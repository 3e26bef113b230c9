"""Admission queue with bounded concurrency and a bounded FIFO wait list.

Admission rules:
- fewer than ``max_parallel`` running: the task starts immediately
- otherwise, fewer than ``max_queued`` waiting: the task waits in FIFO order
- otherwise: ``QueueCapacityExceeded`` is raised at once, the caller never blocks

The queue never retries. A task's failure is reported through its handle and
frees the slot for the next waiting task.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Optional, Set

import structlog

from clipvault.core.exceptions import QueueCapacityExceeded
from clipvault.core.metrics import MetricsCollector
from clipvault.models.media import DedupKey

logger = structlog.get_logger(__name__)


@dataclass
class QueueTask:
    """A unit of work waiting for, or holding, an execution slot."""

    dedup_key: DedupKey
    work: Callable[[], Awaitable[Any]]
    enqueued_at: float = field(default_factory=time.monotonic)
    future: "asyncio.Future[Any]" = field(default=None, repr=False)  # type: ignore[assignment]


@dataclass(frozen=True)
class QueueStatus:
    """Point-in-time queue counters."""

    active: int
    queued: int


class AdmissionQueue:
    """Bounded-concurrency scheduler for download work.

    All bookkeeping happens synchronously between awaits, so admission decisions
    are atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self, max_parallel: int = 3, max_queued: int = 50) -> None:
        """Initialize the admission queue.

        Args:
            max_parallel: Maximum number of tasks running at once.
            max_queued: Maximum number of tasks waiting for a slot.
        """
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        if max_queued < 0:
            raise ValueError("max_queued must not be negative")

        self.max_parallel = max_parallel
        self.max_queued = max_queued

        self._waiting: Deque[QueueTask] = deque()
        self._running: Set["asyncio.Task[None]"] = set()
        self._closed = False

        logger.debug(
            "admission_queue_initialized",
            max_parallel=max_parallel,
            max_queued=max_queued,
        )

    def add(self, task: QueueTask) -> "asyncio.Future[Any]":
        """Submit a task.

        Args:
            task: The work to run once admitted.

        Returns:
            A future resolving to the work's result, or raising its exception.

        Raises:
            QueueCapacityExceeded: If no slot is free and the wait list is full.
        """
        if self._closed:
            raise QueueCapacityExceeded("Admission queue is shut down")

        task.future = asyncio.get_running_loop().create_future()

        if len(self._running) < self.max_parallel:
            self._start(task)
        elif len(self._waiting) < self.max_queued:
            self._waiting.append(task)
            logger.info(
                "task_enqueued",
                dedup_key=task.dedup_key,
                queue_position=len(self._waiting),
                active_count=len(self._running),
            )
        else:
            MetricsCollector.record_queue_rejection()
            logger.warning(
                "task_rejected_queue_full",
                dedup_key=task.dedup_key,
                active_count=len(self._running),
                queued_count=len(self._waiting),
            )
            raise QueueCapacityExceeded(
                f"Queue is full (max {self.max_queued} waiting tasks)"
            )

        self._update_metrics()
        return task.future

    def status(self) -> QueueStatus:
        """Get active and waiting counts without touching running tasks."""
        return QueueStatus(active=len(self._running), queued=len(self._waiting))

    def position(self, dedup_key: DedupKey) -> Optional[int]:
        """Get the 1-indexed wait-list position of a task, None if not waiting."""
        for idx, task in enumerate(self._waiting):
            if task.dedup_key == dedup_key:
                return idx + 1
        return None

    async def shutdown(self) -> None:
        """Abruptly stop the queue.

        Waiting tasks fail with ``CancelledError``; running tasks are cancelled.
        """
        self._closed = True

        while self._waiting:
            task = self._waiting.popleft()
            if not task.future.done():
                task.future.cancel()

        running = list(self._running)
        for runner in running:
            runner.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)

        self._update_metrics()
        logger.info("admission_queue_shutdown", cancelled=len(running))

    def _start(self, task: QueueTask) -> None:
        runner = asyncio.create_task(self._run(task))
        self._running.add(runner)
        runner.add_done_callback(self._on_done)

        logger.info(
            "task_admitted",
            dedup_key=task.dedup_key,
            waited_seconds=round(time.monotonic() - task.enqueued_at, 3),
            active_count=len(self._running),
        )

    async def _run(self, task: QueueTask) -> None:
        try:
            result = await task.work()
        except asyncio.CancelledError:
            if not task.future.done():
                task.future.cancel()
            raise
        except Exception as e:
            logger.warning(
                "task_failed",
                dedup_key=task.dedup_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            if not task.future.done():
                task.future.set_exception(e)
        else:
            if not task.future.done():
                task.future.set_result(result)

    def _on_done(self, runner: "asyncio.Task[None]") -> None:
        self._running.discard(runner)

        if not self._closed:
            while self._waiting and len(self._running) < self.max_parallel:
                next_task = self._waiting.popleft()
                if next_task.future.done():
                    continue
                self._start(next_task)

        self._update_metrics()

    def _update_metrics(self) -> None:
        MetricsCollector.update_queue_metrics(
            queued=len(self._waiting),
            active=len(self._running),
        )
