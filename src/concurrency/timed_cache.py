"""
Read-mostly cached value with a time-based invalidation window.
"""

from typing import Callable, Generic, Optional, TypeVar
import threading
import time
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writer or self._readers > 0:
                self._cond.wait()
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class TimedCache(Generic[T]):
    """
    Cache a single value returned by a loader for `ttl` seconds.

    Readers share a read lock. On a stale read the caller takes the write lock
    and re-checks staleness before calling the loader, so concurrent misses
    trigger one refresh.
    """

    def __init__(self, loader: Callable[[], T], ttl: float, clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self.ttl = ttl
        self._clock = clock
        self._lock = ReadWriteLock()
        self._value: Optional[T] = None
        self._last_refresh: Optional[float] = None

    def _is_fresh(self) -> bool:
        return self._last_refresh is not None and (self._clock() - self._last_refresh) < self.ttl

    def get(self) -> T:
        """Return the cached value, refreshing it if the window has elapsed."""
        self._lock.acquire_read()
        try:
            if self._is_fresh():
                return self._value
        finally:
            self._lock.release_read()

        self._lock.acquire_write()
        try:
            # Another writer may have refreshed while we waited
            if self._is_fresh():
                return self._value

            logger.debug("Refreshing cached value")
            self._value = self._loader()
            self._last_refresh = self._clock()
            return self._value
        finally:
            self._lock.release_write()

    def invalidate(self) -> None:
        """Force the next get() to reload."""
        self._lock.acquire_write()
        try:
            self._last_refresh = None
        finally:
            self._lock.release_write()
