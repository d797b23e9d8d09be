"""
Per-query data fetching on top of the cache manager.

CachedQuery owns what the cache deliberately does not: retry with
exponential backoff, loading/error state, interval refetching, and
reacting to invalidation of its key.
"""
import threading
import time
import logging
from typing import Any, Callable, Generic, Optional, TypeVar

from tenacity import Retrying, before_sleep_log, stop_after_attempt, wait_exponential

from .cache.core import fingerprint_payload
from .cache.manager import CacheManager
from .cache.ttl_policies import get_ttl_for_key

logger = logging.getLogger("cache.query")

T = TypeVar("T")


def with_retry(
    fetcher: Callable[[], T],
    retry_count: int = 2,
    retry_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[], T]:
    """
    Wrap fetcher so it is retried retry_count times.

    The wait before attempt n+1 is retry_delay * 2**(n-1). The last error
    is raised once attempts run out.
    """
    retry_count = max(0, retry_count)

    def fetch() -> T:
        retrying = Retrying(
            stop=stop_after_attempt(retry_count + 1),
            wait=wait_exponential(multiplier=retry_delay, min=0),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            sleep=sleep,
            reraise=True,
        )
        return retrying(fetcher)

    return fetch


class CachedQuery(Generic[T]):
    """
    Cache-backed query for one key.

    State attributes (data, is_loading, is_fetching, error, is_stale) are
    meant to be read by whatever renders the result. Errors never escape
    fetch(); they land in .error and on_error.

    Usage:
        query = CachedQuery(cache, keys.products(), client.fetcher("/store-products"))
        query.fetch()
        if query.error is None:
            render(query.data)
    """

    def __init__(
        self,
        cache: CacheManager,
        key: str,
        fetcher: Callable[[], T],
        ttl: Optional[float] = None,
        enabled: bool = True,
        refetch_interval: float = 0,
        initial_data: Optional[T] = None,
        on_success: Optional[Callable[[T], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        stale_while_revalidate: Optional[bool] = None,
        retry_count: int = 2,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            ttl: Seconds until stale; None uses the key family's policy
            stale_while_revalidate: None uses the key family's policy
        """
        policy_ttl, policy_swr = get_ttl_for_key(key)
        self.cache = cache
        self.key = key
        self.ttl = policy_ttl if ttl is None else ttl
        self.enabled = enabled
        self.refetch_interval = refetch_interval
        self.on_success = on_success
        self.on_error = on_error
        self.stale_while_revalidate = (
            policy_swr if stale_while_revalidate is None else stale_while_revalidate
        )
        self._fetcher = with_retry(fetcher, retry_count, retry_delay, sleep)

        self.data: Optional[T] = initial_data
        self.is_loading = True
        self.is_fetching = False
        self.error: Optional[Exception] = None
        self.is_stale = False

        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._poller: Optional[threading.Thread] = None
        self._revalidation: Optional[threading.Thread] = None
        self._unsubscribe = cache.on_invalidate(key, self._mark_stale)

    def fetch(self, force_refresh: bool = False) -> None:
        """
        Load data for the key.

        Cached data is published immediately and revalidated on a
        background thread; otherwise the call blocks on the fetch.
        """
        if not self.enabled:
            return

        if not force_refresh:
            cached = self.cache.get(self.key)
            if cached is not None:
                self._publish(cached)
                self.is_loading = False
                self.error = None
                self._notify_success(cached)

                self.is_fetching = True
                self._revalidation = threading.Thread(
                    target=self._revalidate,
                    name=f"query-revalidate-{self.key}",
                    daemon=True,
                )
                self._revalidation.start()
                return

        self.is_fetching = True
        self.is_loading = True
        try:
            result = self.cache.get_or_fetch(
                self.key,
                self._fetcher,
                ttl=self.ttl,
                force_refresh=force_refresh,
                stale_while_revalidate=self.stale_while_revalidate,
            )
            self._publish(result)
            self.error = None
            self.is_stale = False
            self._notify_success(result)
        except Exception as e:
            logger.warning(f"Query {self.key} failed: {e}")
            self.error = e
            if self.on_error is not None:
                try:
                    self.on_error(e)
                except Exception as callback_error:
                    logger.warning(f"on_error callback for {self.key} failed: {callback_error}")
        finally:
            self.is_loading = False
            self.is_fetching = False

    def _revalidate(self) -> None:
        try:
            result = self.cache.get_or_fetch(
                self.key,
                self._fetcher,
                ttl=self.ttl,
                force_refresh=True,
                stale_while_revalidate=self.stale_while_revalidate,
            )
            if self._publish(result):
                self.is_stale = False
        except Exception as e:
            logger.warning(f"Revalidation of {self.key} failed: {e}")
        finally:
            self.is_fetching = False

    def refetch(self, force: bool = True) -> None:
        self.fetch(force_refresh=force)

    def invalidate(self) -> None:
        """Drop the cached value everywhere, then fetch it again."""
        self.cache.invalidate(self.key)
        self.is_stale = True
        self.fetch(force_refresh=True)

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until a background revalidation started by fetch() ends."""
        thread = self._revalidation
        if thread is not None:
            thread.join(timeout)

    # =========================================================================
    # Interval refetching
    # =========================================================================

    def start(self) -> None:
        """Fetch now, then refetch every refetch_interval seconds until close()."""
        self.fetch()
        if self.refetch_interval <= 0 or self._poller is not None:
            return
        self._poller = threading.Thread(
            target=self._poll,
            name=f"query-poll-{self.key}",
            daemon=True,
        )
        self._poller.start()

    def _poll(self) -> None:
        while not self._stop.wait(self.refetch_interval):
            self.fetch()

    def close(self) -> None:
        """Stop polling and drop the invalidation subscription."""
        self._stop.set()
        self._unsubscribe()
        if self._poller is not None:
            self._poller.join(timeout=self.refetch_interval + 1)
            self._poller = None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _publish(self, value: T) -> bool:
        """Replace data if its content changed. Returns True on change."""
        entry = self.cache.peek_entry(self.key)
        if entry is not None and entry.data is value:
            fingerprint = entry.fingerprint
        else:
            fingerprint = fingerprint_payload(value)

        with self._lock:
            if fingerprint == self._fingerprint:
                return False
            self._fingerprint = fingerprint
            self.data = value
            return True

    def _mark_stale(self) -> None:
        self.is_stale = True

    def _notify_success(self, value: T) -> None:
        if self.on_success is not None:
            try:
                self.on_success(value)
            except Exception as e:
                logger.warning(f"on_success callback for {self.key} failed: {e}")


def prefetch_query(
    cache: CacheManager,
    key: str,
    fetcher: Callable[[], Any],
    ttl: Optional[float] = None,
) -> None:
    """Warm the cache for key; failures are logged, not raised."""
    try:
        cache.get_or_fetch(key, fetcher, ttl=ttl)
    except Exception as e:
        logger.warning(f"Failed to prefetch {key}: {e}")


def invalidate_queries(cache: CacheManager, pattern: str) -> int:
    """Invalidate every cached query whose key matches the regex pattern."""
    return cache.invalidate_pattern(pattern)
