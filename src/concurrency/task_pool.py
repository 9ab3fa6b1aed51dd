"""
Fixed-size worker pool fed through a bounded queue.

Producers block in submit() while the queue is full, so at most
`queue_size` tasks are waiting at any time. Every task produces a
TaskResult; a failing task never stops the other workers.
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, TypeVar
import queue
import threading
import logging

from src.models.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STOP = object()
_POLL_INTERVAL = 0.05


@dataclass
class TaskResult(Generic[T]):
    """Outcome of one task."""
    task: T
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskPool(Generic[T]):
    """Run `handler(task)` on `worker_count` threads."""

    def __init__(
        self,
        handler: Callable[[T], Any],
        worker_count: int,
        queue_size: Optional[int] = None,
        name: str = "worker",
        cancel_event: Optional[threading.Event] = None,
    ):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.handler = handler
        self.worker_count = worker_count
        self.name = name
        self.cancel_event = cancel_event
        self._tasks: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size or worker_count)
        self._results: List[TaskResult] = []
        self._results_lock = threading.Lock()
        self._workers: List[threading.Thread] = []
        self._closed = False

    def __enter__(self) -> "TaskPool[T]":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.join()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def start(self) -> None:
        for i in range(self.worker_count):
            worker = threading.Thread(
                target=self._run,
                name=f"{self.name}-{i + 1}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)

    def submit(self, task: T) -> bool:
        """
        Queue a task, blocking while the queue is full.

        Returns:
            False if the pool was cancelled before the task could be queued.
        """
        if self._closed:
            raise RuntimeError(f"{self.name} pool is closed")

        while not self.cancelled:
            try:
                self._tasks.put(task, timeout=_POLL_INTERVAL)
                return True
            except queue.Full:
                continue

        logger.info(f"{self.name} pool cancelled; task not scheduled")
        return False

    def close(self) -> None:
        """Signal workers to exit once the queue is drained."""
        if self._closed:
            return
        self._closed = True
        for _ in self._workers:
            self._tasks.put(_STOP)

    def join(self) -> List[TaskResult]:
        """Close the pool, wait for every worker to exit and return all results."""
        self.close()
        for worker in self._workers:
            worker.join()
        with self._results_lock:
            return list(self._results)

    def _record(self, result: TaskResult) -> None:
        with self._results_lock:
            self._results.append(result)

    def _run(self) -> None:
        while True:
            task = self._tasks.get()
            if task is _STOP:
                break

            if self.cancelled:
                self._record(TaskResult(task=task, error=OperationCancelled("task skipped after cancellation")))
                continue

            try:
                value = self.handler(task)
            except Exception as e:
                logger.warning(f"{threading.current_thread().name}: task failed: {e}")
                self._record(TaskResult(task=task, error=e))
            else:
                self._record(TaskResult(task=task, value=value))
