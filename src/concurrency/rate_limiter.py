"""
Bounded-concurrency limiter for calls to the external model.
"""

from contextlib import contextmanager
from typing import Iterator, Optional
import threading
import logging

from src.models.errors import OperationCancelled

logger = logging.getLogger(__name__)

# How often a blocked acquire re-checks the cancel event
_POLL_INTERVAL = 0.05


class RateLimiter:
    """Fixed-capacity semaphore shared by every caller of the model API."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._semaphore = threading.BoundedSemaphore(capacity)

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> None:
        """
        Block until a slot is free.

        Raises:
            OperationCancelled: if cancel_event is set before a slot is obtained.
        """
        if cancel_event is None:
            self._semaphore.acquire()
            return

        while not self._semaphore.acquire(timeout=_POLL_INTERVAL):
            if cancel_event.is_set():
                raise OperationCancelled("cancelled while waiting for a model call slot")

        if cancel_event.is_set():
            self._semaphore.release()
            raise OperationCancelled("cancelled while waiting for a model call slot")

    def release(self) -> None:
        self._semaphore.release()

    @contextmanager
    def slot(self, cancel_event: Optional[threading.Event] = None) -> Iterator[None]:
        """Hold one slot for the duration of the block, releasing it on every exit path."""
        self.acquire(cancel_event)
        try:
            yield
        finally:
            self.release()
