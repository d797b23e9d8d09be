"""
Main cache orchestration: two tiers, single-flight fetches and
stale-while-revalidate.
"""
import re
import threading
import time
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from .core import (
    CacheConfig,
    CacheEntry,
    SerializationError,
    deserialize_entry,
    serialize_entry,
    validate_ttl,
)
from .lru import MemoryCache
from .coalescer import RequestCoalescer
from .invalidation import InvalidationBus
from .storage import DurableStore, MemoryStore, SqlStore

logger = logging.getLogger("cache.manager")


class CacheManager:
    """
    Two-tier cache with:
    - LRU-bounded memory tier, durable store behind it
    - Per-key TTL (CacheTTL.INFINITE for manual invalidation only)
    - Request coalescing: one coordinated fetch per key at a time
    - Stale-while-revalidate with background refresh
    - Regex invalidation and per-key invalidation listeners

    Storage failures are logged and never reach the caller; the memory
    tier stays authoritative for the life of the process.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        store: Optional[DurableStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache manager.

        Args:
            config: Capacity, persistence and TTL defaults
            store: Durable tier; defaults to a process-local MemoryStore.
                Ignored when config.persist_to_storage is False.
            clock: Returns the current time in epoch seconds
        """
        self.config = config or CacheConfig()
        self._clock = clock
        self._memory = MemoryCache(self.config.max_memory_items)
        self._store: Optional[DurableStore] = None
        if self.config.persist_to_storage:
            self._store = store if store is not None else MemoryStore()

        self._coalescer = RequestCoalescer(timeout=self.config.coalesce_timeout)
        self._warmup = RequestCoalescer()
        self._bus = InvalidationBus()

        # Background revalidation, one daemon thread per key
        self._revalidating: Set[str] = set()
        self._background: Set[threading.Thread] = set()
        self._revalidating_lock = threading.Lock()
        self._closed = False

        # Stats tracking
        self._stats = {
            "hits": 0,
            "stale_hits": 0,
            "misses": 0,
            "fetches": 0,
            "revalidations": 0,
        }
        self._stats_lock = threading.Lock()

    # =========================================================================
    # Warm-up
    # =========================================================================

    def warm_up(self) -> int:
        """
        Load every valid durable entry into memory.

        Concurrent calls share a single scan. Never raises.

        Returns:
            Number of entries loaded
        """
        if self._store is None:
            return 0
        return self._warmup.get_or_fetch("warm_up", self._perform_warm_up)

    def _perform_warm_up(self) -> int:
        prefix = self.config.storage_prefix
        try:
            storage_keys = self._store.get_all_keys(prefix)
            if not storage_keys:
                return 0
            pairs = self._store.multi_get(storage_keys)
        except Exception as e:
            logger.warning(f"Warm up failed: {e}")
            return 0

        now = self._clock()
        loaded = 0
        for storage_key, raw in pairs:
            if not raw:
                continue
            try:
                entry = deserialize_entry(raw)
            except SerializationError as e:
                logger.debug(f"Skipping unreadable record {storage_key}: {e}")
                continue
            if not entry.is_valid(now):
                continue
            self._set_memory(storage_key[len(prefix):], entry)
            loaded += 1

        logger.info(f"Warmed up {len(self._memory)} items from storage")
        return loaded

    # =========================================================================
    # Reads and writes
    # =========================================================================

    def get(self, key: str) -> Optional[Any]:
        """
        Get a valid cached value, or None.

        Expired memory entries are dropped; expired or unreadable durable
        records are deleted.
        """
        now = self._clock()
        entry = self._memory.get(key)
        if entry is not None:
            if entry.is_valid(now):
                self._count("hits")
                return entry.data
            self._memory.remove(key)

        entry = self._read_durable(key)
        if entry is not None:
            if entry.is_valid(now):
                self._set_memory(key, entry)
                self._count("hits")
                return entry.data
            self._remove_durable([key])

        self._count("misses")
        return None

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        """
        Store data under key in memory, then best-effort in the durable store.

        Args:
            ttl: Seconds until stale, CacheTTL.INFINITE, or None for the
                configured default

        Raises:
            ValueError: ttl is neither positive nor INFINITE
        """
        ttl = self._resolve_ttl(ttl)
        entry = CacheEntry.create(data, ttl, now=self._clock())
        self._set_memory(key, entry)

        if self._store is not None:
            try:
                self._store.set(self._storage_key(key), serialize_entry(entry))
            except Exception as e:
                logger.warning(f"Error writing {key} to storage: {e}")

    def peek_entry(self, key: str) -> Optional[CacheEntry]:
        """Memory-tier entry for key, valid or not, without touching recency."""
        return self._memory.peek(key)

    # =========================================================================
    # Get-or-fetch
    # =========================================================================

    def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Any],
        ttl: Optional[float] = None,
        force_refresh: bool = False,
        stale_while_revalidate: bool = True,
    ) -> Any:
        """
        Return cached data for key, fetching it if needed.

        - An in-flight fetch for key is joined rather than repeated
        - Fresh cached data is returned without calling fetcher
        - Stale data is returned immediately and refreshed in the background
          when stale_while_revalidate is set
        - Otherwise fetcher runs once for all concurrent callers

        Raises:
            Exception: whatever fetcher raised, when no cached path applied
            TimeoutError: waiting on another caller's fetch exceeded
                config.coalesce_timeout
        """
        ttl = self._resolve_ttl(ttl)

        if not force_refresh and not self._coalescer.is_pending(key):
            entry = self._find_entry(key)
            if entry is not None:
                if entry.is_valid(self._clock()):
                    logger.debug(f"CACHE HIT (fresh): {key}")
                    self._count("hits")
                    return entry.data
                if stale_while_revalidate:
                    logger.debug(f"CACHE HIT (stale, revalidating): {key}")
                    self._count("stale_hits")
                    self._refresh_in_background(key, fetcher, ttl)
                    return entry.data

        def load():
            if not force_refresh:
                # A fetch that settled just before we registered may have filled the cache
                current = self._memory.peek(key)
                if current is not None and current.is_valid(self._clock()):
                    return current.data
            return self._fetch_and_store(key, fetcher, ttl)

        if not force_refresh:
            self._count("misses")
        return self._coalescer.get_or_fetch(key, load, force=force_refresh)

    def _find_entry(self, key: str) -> Optional[CacheEntry]:
        """Memory or durable entry for key, including stale ones."""
        entry = self._memory.get(key)
        if entry is not None:
            return entry
        entry = self._read_durable(key)
        if entry is not None and entry.is_valid(self._clock()):
            self._set_memory(key, entry)
        return entry

    def _fetch_and_store(self, key: str, fetcher: Callable[[], Any], ttl: float) -> Any:
        logger.info(f"FETCH: {key}")
        self._count("fetches")
        data = fetcher()
        self.set(key, data, ttl)
        return data

    def _refresh_in_background(self, key: str, fetcher: Callable[[], Any], ttl: float) -> None:
        """Start a detached refresh on its own daemon thread; failures are only logged."""
        with self._revalidating_lock:
            if self._closed:
                logger.debug(f"Manager closed, not refreshing: {key}")
                return
            if key in self._revalidating:
                logger.debug(f"Already revalidating: {key}")
                return
            self._revalidating.add(key)

        def do_revalidate():
            try:
                self._fetch_and_store(key, fetcher, ttl)
                self._count("revalidations")
                logger.debug(f"Background revalidation complete: {key}")
            except Exception as e:
                logger.warning(f"Background refresh failed: {key} - {e}")
            finally:
                with self._revalidating_lock:
                    self._revalidating.discard(key)
                    self._background.discard(threading.current_thread())

        thread = threading.Thread(
            target=do_revalidate,
            name=f"cache-revalidate-{key}",
            daemon=True,
        )
        with self._revalidating_lock:
            self._background.add(thread)
        thread.start()

    def wait_for_background(self, timeout: Optional[float] = None) -> bool:
        """
        Block until running background refreshes finish.

        Returns:
            True if none are left running
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._revalidating_lock:
            pending = list(self._background)
        for thread in pending:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(thread.is_alive() for thread in pending)

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(self, key: str) -> None:
        """Remove key from both tiers and notify its listeners."""
        self._memory.remove(key)
        self._remove_durable([key])
        logger.debug(f"Invalidated cache: {key}")
        self._bus.notify(key)

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate every key matching a regular expression.

        Memory keys and durable keys (prefix stripped) are matched
        separately; the union is removed from both tiers with one bulk
        durable removal and each key's listeners are notified.

        Raises:
            re.error: pattern is not a valid regular expression

        Returns:
            Number of keys invalidated
        """
        regex = re.compile(pattern)
        matched = {k for k in self._memory.keys() if regex.search(k)}

        if self._store is not None:
            prefix = self.config.storage_prefix
            try:
                for storage_key in self._store.get_all_keys(prefix):
                    key = storage_key[len(prefix):]
                    if regex.search(key):
                        matched.add(key)
            except Exception as e:
                logger.warning(f"Error listing storage keys for pattern '{pattern}': {e}")

        for key in matched:
            self._memory.remove(key)
        self._remove_durable(sorted(matched))

        for key in sorted(matched):
            self._bus.notify(key)

        if matched:
            logger.info(f"Invalidated {len(matched)} entries matching '{pattern}'")
        return len(matched)

    def clear(self) -> None:
        """Empty both tiers. Listeners are not notified."""
        count = self._memory.clear()

        if self._store is not None:
            try:
                storage_keys = self._store.get_all_keys(self.config.storage_prefix)
                if storage_keys:
                    self._store.multi_remove(storage_keys)
            except Exception as e:
                logger.warning(f"Error clearing storage: {e}")

        logger.info(f"Cache cleared ({count} memory entries)")

    def on_invalidate(self, key: str, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Subscribe to invalidation of key.

        Returns:
            Function that removes the subscription
        """
        return self._bus.subscribe(key, callback)

    # =========================================================================
    # Stats and lifecycle
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        with self._revalidating_lock:
            revalidating = len(self._revalidating)
        coalescer = self._coalescer.get_stats()

        return {
            "memory_size": len(self._memory),
            "max_size": self._memory.capacity,
            **stats,
            "in_flight": coalescer["active_requests"],
            "in_flight_keys": coalescer["active_keys"],
            "revalidating": revalidating,
            "listeners": self._bus.listener_count(),
        }

    def close(self, wait: bool = True) -> None:
        """Stop scheduling background refreshes, optionally waiting for running ones."""
        with self._revalidating_lock:
            self._closed = True
        if wait:
            self.wait_for_background()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _resolve_ttl(self, ttl: Optional[float]) -> float:
        return validate_ttl(self.config.default_ttl if ttl is None else ttl)

    def _storage_key(self, key: str) -> str:
        return f"{self.config.storage_prefix}{key}"

    def _set_memory(self, key: str, entry: CacheEntry) -> None:
        """Write to the memory tier; evicted keys leave the durable store too."""
        evicted = [k for k in self._memory.set(key, entry) if k != key]
        if evicted:
            self._remove_durable(evicted)

    def _read_durable(self, key: str) -> Optional[CacheEntry]:
        if self._store is None:
            return None
        try:
            raw = self._store.get(self._storage_key(key))
        except Exception as e:
            logger.warning(f"Error reading {key} from storage: {e}")
            return None
        if not raw:
            return None
        try:
            return deserialize_entry(raw)
        except SerializationError as e:
            logger.debug(f"Dropping unreadable record for {key}: {e}")
            self._remove_durable([key])
            return None

    def _remove_durable(self, keys: List[str]) -> None:
        if self._store is None or not keys:
            return
        try:
            if len(keys) == 1:
                self._store.remove(self._storage_key(keys[0]))
            else:
                self._store.multi_remove([self._storage_key(k) for k in keys])
        except Exception as e:
            logger.warning(f"Error removing {keys} from storage: {e}")

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1


# Global cache manager instance
_cache_manager: Optional[CacheManager] = None
_cache_manager_lock = threading.Lock()


def get_cache_manager() -> CacheManager:
    """Get or create the process-wide cache manager from settings."""
    global _cache_manager
    with _cache_manager_lock:
        if _cache_manager is None:
            from config.settings import settings

            store = SqlStore(settings.storage_url) if settings.persist_to_storage else None
            _cache_manager = CacheManager(CacheConfig.from_settings(settings), store=store)
        return _cache_manager
