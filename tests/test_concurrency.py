"""Unit tests for the rate limiter, timed cache and task pool."""
import threading
import time

import pytest

from src.concurrency.rate_limiter import RateLimiter
from src.concurrency.task_pool import TaskPool
from src.concurrency.timed_cache import TimedCache
from src.models.errors import OperationCancelled


class TestRateLimiter:
    """Test RateLimiter class."""

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    def test_concurrency_never_exceeds_capacity(self):
        limiter = RateLimiter(2)
        active = 0
        peak = 0
        lock = threading.Lock()

        def call():
            nonlocal active, peak
            with limiter.slot():
                with lock:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.02)
                with lock:
                    active -= 1

        threads = [threading.Thread(target=call) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak <= 2

    def test_acquire_cancelled_while_full(self):
        limiter = RateLimiter(1)
        limiter.acquire()
        cancel_event = threading.Event()
        threading.Timer(0.05, cancel_event.set).start()

        start = time.monotonic()
        with pytest.raises(OperationCancelled):
            limiter.acquire(cancel_event)
        assert time.monotonic() - start < 1.0

        limiter.release()

    def test_slot_released_on_error(self):
        limiter = RateLimiter(1)
        with pytest.raises(RuntimeError):
            with limiter.slot():
                raise RuntimeError("boom")

        # Slot is free again
        limiter.acquire()
        limiter.release()


class TestTimedCache:
    """Test TimedCache class."""

    def test_value_reused_within_window(self):
        now = [0.0]
        calls = []
        cache = TimedCache(lambda: calls.append(1) or len(calls), ttl=300, clock=lambda: now[0])

        assert cache.get() == 1
        now[0] = 299
        assert cache.get() == 1
        assert len(calls) == 1

    def test_refresh_after_window(self):
        now = [0.0]
        calls = []
        cache = TimedCache(lambda: calls.append(1) or len(calls), ttl=300, clock=lambda: now[0])

        cache.get()
        now[0] = 300
        assert cache.get() == 2

    def test_invalidate_forces_reload(self):
        calls = []
        cache = TimedCache(lambda: calls.append(1) or len(calls), ttl=300)
        cache.get()
        cache.invalidate()
        assert cache.get() == 2

    def test_concurrent_misses_load_once(self):
        calls = []

        def loader():
            calls.append(1)
            time.sleep(0.05)
            return "issues"

        cache = TimedCache(loader, ttl=300)
        results = []
        threads = [threading.Thread(target=lambda: results.append(cache.get())) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == ["issues"] * 10
        assert len(calls) == 1


class TestTaskPool:
    """Test TaskPool class."""

    def test_all_tasks_processed(self):
        with TaskPool(lambda n: n * 2, worker_count=3) as pool:
            for n in range(20):
                assert pool.submit(n)
        results = pool.join()

        assert sorted(r.value for r in results) == [n * 2 for n in range(20)]
        assert all(r.ok for r in results)

    def test_failing_task_does_not_stop_pool(self):
        def handler(n):
            if n == 5:
                raise ValueError("bad task")
            return n

        pool = TaskPool(handler, worker_count=2)
        pool.start()
        for n in range(10):
            pool.submit(n)
        results = pool.join()

        failed = [r for r in results if not r.ok]
        assert len(results) == 10
        assert len(failed) == 1
        assert failed[0].task == 5
        assert isinstance(failed[0].error, ValueError)

    def test_submit_after_cancel_returns_false(self):
        cancel_event = threading.Event()
        pool = TaskPool(lambda n: n, worker_count=1, cancel_event=cancel_event)
        pool.start()
        cancel_event.set()

        assert pool.submit(1) is False
        assert pool.join() == []

    def test_queued_tasks_skipped_after_cancel(self):
        cancel_event = threading.Event()
        release = threading.Event()

        def handler(n):
            if n == 0:
                cancel_event.set()
                release.wait(1.0)
            return n

        pool = TaskPool(handler, worker_count=1, queue_size=5, cancel_event=cancel_event)
        pool.start()
        pool.submit(0)
        # Wait for the first task to trip cancellation
        assert cancel_event.wait(1.0)
        release.set()
        results = pool.join()

        assert [r.value for r in results if r.ok] == [0]

    def test_join_is_idempotent(self):
        pool = TaskPool(lambda n: n, worker_count=2)
        pool.start()
        pool.submit(1)
        assert len(pool.join()) == 1
        assert len(pool.join()) == 1

    def test_submit_after_close_raises(self):
        pool = TaskPool(lambda n: n, worker_count=1)
        pool.start()
        pool.join()
        with pytest.raises(RuntimeError):
            pool.submit(1)
