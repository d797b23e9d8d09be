"""
Tests for the cache-backed query hook.
"""
import threading

import pytest

from silo_cache.cache import CacheTTL
from silo_cache.query import CachedQuery, invalidate_queries, prefetch_query, with_retry

from conftest import wait_until


class Counter:
    """Fetcher that returns queued values (or raises queued exceptions)."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.lock = threading.Lock()

    def __call__(self):
        with self.lock:
            self.calls += 1
            outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def sleeps():
    return []


def _query(manager, key, fetcher, sleeps, **kwargs):
    return CachedQuery(manager, key, fetcher, sleep=sleeps.append, **kwargs)


# =============================================================================
# Retry
# =============================================================================

class TestWithRetry:

    def test_retries_with_exponential_backoff(self, sleeps):
        fetcher = Counter(ConnectionError("1"), ConnectionError("2"), "ok")
        assert with_retry(fetcher, retry_count=2, retry_delay=1.0, sleep=sleeps.append)() == "ok"
        assert fetcher.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_raises_last_error_when_attempts_run_out(self, sleeps):
        fetcher = Counter(ConnectionError("first"), ConnectionError("last"))
        with pytest.raises(ConnectionError, match="last"):
            with_retry(fetcher, retry_count=2, retry_delay=0.5, sleep=sleeps.append)()
        assert fetcher.calls == 3
        assert sleeps == [0.5, 1.0]

    def test_zero_retries(self, sleeps):
        fetcher = Counter(ValueError("nope"))
        with pytest.raises(ValueError):
            with_retry(fetcher, retry_count=0, sleep=sleeps.append)()
        assert fetcher.calls == 1
        assert sleeps == []


# =============================================================================
# CachedQuery
# =============================================================================

class TestCachedQuery:

    def test_cold_fetch_populates_state(self, manager, sleeps):
        seen = []
        query = _query(manager, "products", Counter([1, 2]), sleeps, ttl=60, on_success=seen.append)
        assert query.is_loading

        query.fetch()

        assert query.data == [1, 2]
        assert not query.is_loading
        assert not query.is_fetching
        assert query.error is None
        assert seen == [[1, 2]]
        assert manager.get("products") == [1, 2]

    def test_failure_is_reported_not_raised(self, manager, sleeps):
        errors = []
        query = _query(
            manager, "products", Counter(ConnectionError("down")), sleeps,
            retry_count=1, on_error=errors.append,
        )

        query.fetch()

        assert isinstance(query.error, ConnectionError)
        assert errors == [query.error]
        assert query.data is None
        assert not query.is_loading
        assert sleeps == [1.0]

    def test_cached_value_shown_then_revalidated(self, manager, sleeps, gate):
        manager.set("products", ["cached"], ttl=60)
        calls = []

        def fetcher():
            calls.append(1)
            gate.wait(5)
            return ["fresh"]

        query = _query(manager, "products", fetcher, sleeps)

        query.fetch()
        assert query.data == ["cached"]
        assert not query.is_loading
        assert query.is_fetching

        gate.set()
        query.wait(5)
        assert calls == [1]
        assert query.data == ["fresh"]
        assert not query.is_fetching
        assert manager.get("products") == ["fresh"]

    def test_unchanged_revalidation_keeps_data_object(self, manager, sleeps):
        manager.set("k", {"a": 1}, ttl=60)
        query = _query(manager, "k", Counter({"a": 1}), sleeps)

        query.fetch()
        first = query.data
        query.wait(5)

        assert query.data is first

    def test_disabled_query_does_nothing(self, manager, sleeps):
        fetcher = Counter("x")
        query = _query(manager, "k", fetcher, sleeps, enabled=False, initial_data="init")
        query.fetch()
        assert fetcher.calls == 0
        assert query.data == "init"

    def test_invalidation_marks_query_stale(self, manager, sleeps):
        query = _query(manager, "k", Counter("v"), sleeps)
        query.fetch()
        assert not query.is_stale

        manager.invalidate("k")
        assert query.is_stale

    def test_invalidate_refetches(self, manager, sleeps):
        fetcher = Counter("v1", "v2")
        query = _query(manager, "k", fetcher, sleeps)
        query.fetch()

        query.invalidate()

        assert fetcher.calls == 2
        assert query.data == "v2"
        assert not query.is_stale

    def test_refetch_forces_network(self, manager, sleeps):
        fetcher = Counter("v1", "v2")
        query = _query(manager, "k", fetcher, sleeps)
        query.fetch()
        query.refetch()
        assert fetcher.calls == 2
        assert query.data == "v2"

    def test_close_unsubscribes(self, manager, sleeps):
        query = _query(manager, "k", Counter("v"), sleeps)
        assert manager.get_stats()["listeners"] == 1
        query.close()
        assert manager.get_stats()["listeners"] == 0

    def test_interval_refetch(self, manager, sleeps):
        fetcher = Counter("v")
        query = _query(manager, "k", fetcher, sleeps, refetch_interval=0.02)
        try:
            query.start()
            assert wait_until(lambda: fetcher.calls >= 3, timeout=3)
        finally:
            query.close()


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:

    def test_prefetch_query_fills_cache(self, manager):
        prefetch_query(manager, "categories", lambda: ["a"], ttl=60)
        assert manager.get("categories") == ["a"]

    def test_prefetch_query_swallows_errors(self, manager):
        def broken():
            raise ConnectionError("offline")

        prefetch_query(manager, "categories", broken)
        assert manager.get("categories") is None

    def test_invalidate_queries(self, manager):
        manager.set("orders_open", 1, ttl=60)
        manager.set("orders_closed", 2, ttl=60)
        manager.set("products", 3, ttl=60)
        assert invalidate_queries(manager, "^orders") == 2
        assert manager.get("products") == 3

    def test_options_default_to_key_family_policy(self, manager, sleeps):
        orders = _query(manager, "orders_open", Counter([]), sleeps)
        assert orders.ttl == CacheTTL.SHORT
        assert orders.stale_while_revalidate is False

        categories = _query(manager, "categories", Counter([]), sleeps, ttl=5)
        assert categories.ttl == 5
        assert categories.stale_while_revalidate is True
