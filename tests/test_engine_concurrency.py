"""Tests de concurrencia y caché del motor de analítica.

Ejecutar:
    pytest tests/test_engine_concurrency.py -v
"""

import threading
import time

import pytest

from conftest import record_series

from queue_analytics.analytics_service.engine.cache import AnalyticsCache, CacheEntry
from queue_analytics.analytics_service.errors import UnknownEntityError, UpstreamFailureError
from queue_analytics.analytics_service.repository.history_repository import (
    InMemoryStatusHistoryRepository,
)


LINEAR_POINTS = [(0, 10, 1), (60, 20, 2), (120, 30, 3)]


class SlowHistory(InMemoryStatusHistoryRepository):
    """Histórico lento que cuenta llamadas de forma thread-safe."""

    def __init__(self, delay: float = 0.1):
        super().__init__()
        self.delay = delay
        self.calls = 0
        self._calls_lock = threading.Lock()

    def fetch_history(self, connection_id, metric, lookback):
        with self._calls_lock:
            self.calls += 1
        time.sleep(self.delay)
        return super().fetch_history(connection_id, metric, lookback)


def _run_concurrently(n_threads, target):
    barrier = threading.Barrier(n_threads)
    results = [None] * n_threads
    errors = []

    def _worker(i):
        try:
            barrier.wait()
            results[i] = target(i)
        except Exception as e:  # pragma: no cover - se reporta en el assert
            errors.append(e)

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(n_threads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    return results


# =============================================================================
# TEST 1: SINGLE-FLIGHT POR CONEXIÓN
# =============================================================================

class TestSingleFlight:
    """Peticiones simultáneas de la misma conexión comparten un recálculo."""

    def test_same_connection_computed_once(self, make_engine, resolver):
        history = SlowHistory(delay=0.1)
        resolver.register("conn-a", bytes_limit=100, count_limit=1000)
        record_series(history, "conn-a", LINEAR_POINTS)
        engine = make_engine(history_repo=history)

        results = _run_concurrently(8, lambda i: engine.get_status_analytics("conn-a"))

        assert history.calls == 2  # una por métrica
        assert all(r is results[0] for r in results)
        assert engine.stats["computations"] == 1
        assert engine.stats["cache_hits"] == 7

    def test_different_connections_computed_in_parallel(self, make_engine, resolver):
        history = SlowHistory(delay=0.2)
        ids = [f"conn-{i}" for i in range(4)]
        for cid in ids:
            resolver.register(cid, bytes_limit=100, count_limit=1000)
            record_series(history, cid, LINEAR_POINTS)
        engine = make_engine(history_repo=history, fetch_workers=8)

        start = time.perf_counter()
        results = _run_concurrently(4, lambda i: engine.get_status_analytics(ids[i]))
        elapsed = time.perf_counter() - start

        assert [r.connection_id for r in results] == ids
        assert history.calls == 8
        # En serie serían >= 0.8s
        assert elapsed < 0.7

    def test_fresh_reads_do_not_wait_for_other_recomputation(self, make_engine, resolver, monotonic):
        history = SlowHistory(delay=0.0)
        resolver.register("fast", bytes_limit=100, count_limit=1000)
        resolver.register("slow", bytes_limit=100, count_limit=1000)
        record_series(history, "fast", LINEAR_POINTS)
        record_series(history, "slow", LINEAR_POINTS)
        engine = make_engine(history_repo=history)
        cached = engine.get_status_analytics("fast")

        history.delay = 0.5
        worker = threading.Thread(target=engine.get_status_analytics, args=("slow",))
        worker.start()
        try:
            time.sleep(0.05)
            start = time.perf_counter()
            again = engine.get_status_analytics("fast")
            elapsed = time.perf_counter() - start
        finally:
            worker.join(timeout=5)

        assert again is cached
        assert elapsed < 0.1


# =============================================================================
# TEST 2: CACHÉ ACOTADA
# =============================================================================

class TestBoundedCache:

    def test_engine_evicts_oldest_connection(self, make_engine, history, resolver):
        for cid in ("a", "b", "c"):
            resolver.register(cid, bytes_limit=100, count_limit=1000)
            record_series(history, cid, LINEAR_POINTS)
        engine = make_engine(max_cached_connections=2)

        for cid in ("a", "b", "c"):
            engine.get_status_analytics(cid)

        assert engine.cached_ids() == ["b", "c"]
        assert engine.stats["cached_connections"] == 2

    def test_invalidate_all(self, make_engine, history, resolver):
        for cid in ("a", "b"):
            resolver.register(cid, bytes_limit=100, count_limit=1000)
            record_series(history, cid, LINEAR_POINTS)
        engine = make_engine()
        engine.get_status_analytics("a")
        engine.get_status_analytics("b")

        engine.invalidate_all()

        assert engine.cached_ids() == []

    def test_recomputed_entry_moves_to_end(self):
        cache = AnalyticsCache(max_entries=2)
        entry = CacheEntry(analytics=None, computed_monotonic=0.0, models={})

        cache.put("a", entry)
        cache.put("b", entry)
        cache.put("a", entry)
        cache.put("c", entry)

        assert cache.ids() == ["a", "c"]
        assert cache.get("b") is None

    @pytest.mark.parametrize("max_entries", [0, -5])
    def test_max_entries_has_floor(self, max_entries):
        cache = AnalyticsCache(max_entries=max_entries)
        entry = CacheEntry(analytics=None, computed_monotonic=0.0, models={})

        cache.put("a", entry)

        assert len(cache) == 1


# =============================================================================
# TEST 3: LOCKS DE RECÁLCULO
# =============================================================================

def _enter_in_thread(cache, connection_id):
    """Hilo que entra en `computing(connection_id)`; devuelve (hilo, entered)."""
    entered = threading.Event()

    def _worker():
        with cache.computing(connection_id):
            entered.set()

    t = threading.Thread(target=_worker)
    t.start()
    return t, entered


def _wait_for_waiters(cache, connection_id, expected, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        with cache._lock:
            slot = cache._slots.get(connection_id)
            if slot is not None and slot.users >= expected:
                return
        time.sleep(0.005)
    raise AssertionError(f"{connection_id}: no llegaron {expected} hilos")


class TestComputeLocks:

    def test_slot_released_after_use(self):
        cache = AnalyticsCache()

        with cache.computing("a"):
            assert cache.computing_ids() == ["a"]

        assert cache.computing_ids() == []

    def test_slot_released_on_error(self):
        cache = AnalyticsCache()

        with pytest.raises(RuntimeError):
            with cache.computing("a"):
                raise RuntimeError("boom")

        assert cache.computing_ids() == []

    def test_same_connection_is_serialized(self):
        cache = AnalyticsCache()

        with cache.computing("a"):
            t, entered = _enter_in_thread(cache, "a")
            assert not entered.wait(0.1)
        t.join(timeout=2)

        assert entered.is_set()
        assert cache.computing_ids() == []

    def test_other_connection_is_not_blocked(self):
        cache = AnalyticsCache()

        with cache.computing("a"):
            t, entered = _enter_in_thread(cache, "b")
            assert entered.wait(1.0)
        t.join(timeout=2)

    @pytest.mark.parametrize("drop", ["invalidate", "clear", "evict"])
    def test_waiter_keeps_lock_when_entry_is_dropped(self, drop):
        """Un hilo en espera y uno nuevo comparten lock aunque la entrada desaparezca."""
        cache = AnalyticsCache(max_entries=1)
        entry = CacheEntry(analytics=None, computed_monotonic=0.0, models={})
        cache.put("x", entry)

        with cache.computing("x"):
            waiter, waiter_entered = _enter_in_thread(cache, "x")
            _wait_for_waiters(cache, "x", expected=2)

            if drop == "invalidate":
                cache.invalidate("x")
            elif drop == "clear":
                cache.clear()
            else:
                cache.put("y", entry)
            assert cache.get("x") is None

            late, late_entered = _enter_in_thread(cache, "x")
            _wait_for_waiters(cache, "x", expected=3)
            assert not waiter_entered.wait(0.05)
            assert not late_entered.wait(0.05)

        waiter.join(timeout=2)
        late.join(timeout=2)
        assert waiter_entered.is_set() and late_entered.is_set()
        assert cache.computing_ids() == []


class TestComputeLocksDoNotLeak:

    def test_unknown_connections(self, make_engine):
        engine = make_engine()

        for i in range(50):
            with pytest.raises(UnknownEntityError):
                engine.get_status_analytics(f"missing-{i}")
            with pytest.raises(UnknownEntityError):
                engine.refresh(f"missing-{i}")

        assert engine.cached_ids() == []
        assert engine.stats["computing_connections"] == 0

    def test_upstream_failures_without_cache(self, make_engine, history):
        class BrokenResolver:
            def resolve_thresholds(self, connection_id):
                raise ConnectionError("db down")

        engine = make_engine(threshold_resolver=BrokenResolver())

        for i in range(50):
            with pytest.raises(UpstreamFailureError):
                engine.get_status_analytics(f"conn-{i}")

        assert engine.stats["computing_connections"] == 0

    def test_evicted_connections(self, make_engine, history, resolver):
        for cid in ("a", "b", "c"):
            resolver.register(cid, bytes_limit=100, count_limit=1000)
            record_series(history, cid, LINEAR_POINTS)
        engine = make_engine(max_cached_connections=1)

        for cid in ("a", "b", "c"):
            engine.get_status_analytics(cid)

        assert engine.cached_ids() == ["c"]
        assert engine.stats["computing_connections"] == 0
