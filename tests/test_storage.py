"""
Tests for durable store adapters.
"""
import pytest

from silo_cache.cache import CacheConfig, CacheManager, MemoryStore, SqlStore


@pytest.fixture
def sql_store(tmp_path):
    store = SqlStore(f"sqlite:///{tmp_path / 'cache.db'}")
    yield store
    store.dispose()


@pytest.fixture(params=["memory", "sql"])
def any_store(request, tmp_path):
    if request.param == "memory":
        yield MemoryStore()
    else:
        store = SqlStore(f"sqlite:///{tmp_path / 'cache.db'}")
        yield store
        store.dispose()


class TestStoreContract:
    """Behavior every DurableStore adapter must share."""

    def test_set_get_remove(self, any_store):
        any_store.set("a", "1")
        assert any_store.get("a") == "1"
        any_store.set("a", "2")
        assert any_store.get("a") == "2"
        any_store.remove("a")
        assert any_store.get("a") is None
        any_store.remove("a")

    def test_prefix_listing_is_literal(self, any_store):
        any_store.set("silo_cache_a", "1")
        any_store.set("siloXcacheXb", "2")
        any_store.set("other", "3")

        assert any_store.get_all_keys("silo_cache_") == ["silo_cache_a"]
        assert sorted(any_store.get_all_keys()) == ["other", "siloXcacheXb", "silo_cache_a"]

    def test_multi_get_preserves_order_and_missing(self, any_store):
        any_store.set("a", "1")
        any_store.set("c", "3")
        assert any_store.multi_get(["c", "b", "a"]) == [("c", "3"), ("b", None), ("a", "1")]
        assert any_store.multi_get([]) == []

    def test_multi_remove(self, any_store):
        for key in ("a", "b", "c"):
            any_store.set(key, key)
        any_store.multi_remove(["a", "c", "missing"])
        assert any_store.get_all_keys() == ["b"]
        any_store.multi_remove([])


class TestSqlStore:

    def test_data_survives_new_store_instance(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cache.db'}"
        first = SqlStore(url)
        first.set("k", "v")
        first.dispose()

        second = SqlStore(url)
        assert second.get("k") == "v"
        second.dispose()

    def test_warm_restart_through_manager(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cache.db'}"
        first = CacheManager(CacheConfig(), store=SqlStore(url))
        first.set("categories", [{"id": 1, "name": "Drinks"}], ttl=3600)
        first.close()

        second = CacheManager(CacheConfig(), store=SqlStore(url))
        try:
            assert second.warm_up() == 1
            assert second.peek_entry("categories").data == [{"id": 1, "name": "Drinks"}]
            assert second.get("categories") == [{"id": 1, "name": "Drinks"}]
        finally:
            second.close()
