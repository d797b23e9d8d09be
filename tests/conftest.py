"""
Shared fixtures for cache tests.
"""
import threading
import time

import pytest

from silo_cache.cache import CacheConfig, CacheManager, MemoryStore


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(MemoryStore):
    """MemoryStore whose selected operations raise."""

    def __init__(self, fail_on=("get_all_keys",), initial=None):
        super().__init__(initial)
        self.fail_on = set(fail_on)

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_on:
            raise ConnectionError(f"store unavailable: {op}")

    def get_all_keys(self, prefix=""):
        self._maybe_fail("get_all_keys")
        return super().get_all_keys(prefix)

    def multi_get(self, keys):
        self._maybe_fail("multi_get")
        return super().multi_get(keys)

    def get(self, key):
        self._maybe_fail("get")
        return super().get(key)

    def set(self, key, value):
        self._maybe_fail("set")
        super().set(key, value)

    def remove(self, key):
        self._maybe_fail("remove")
        super().remove(key)

    def multi_remove(self, keys):
        self._maybe_fail("multi_remove")
        super().multi_remove(keys)


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll predicate until it is truthy or timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_manager(clock):
    """Factory for managers sharing the test clock; closed after the test."""
    managers = []

    def _make(store=None, **config):
        manager = CacheManager(CacheConfig(**config), store=store, clock=clock)
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        manager.close(wait=False)


@pytest.fixture
def manager(make_manager, store):
    return make_manager(store=store, max_memory_items=10)


@pytest.fixture
def gate():
    """Event used to hold a fetcher open until the test releases it."""
    event = threading.Event()
    yield event
    event.set()
