"""
Priority prefetching of screen data into the cache.

Screens declare the data they need; the prefetcher queues those fetches
ahead of navigation, using static screen-transition patterns plus the
user's own navigation history.
"""
import threading
import time
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, List, Optional

from .api_client import ApiClient
from .cache import keys
from .cache.manager import CacheManager
from .cache.ttl_policies import CacheTTL, get_ttl_for_key

logger = logging.getLogger("cache.prefetch")

NAVIGATION_HISTORY_KEY = "navigation_history"
HISTORY_LIMIT = 50


class Priority(IntEnum):
    """Lower value is fetched first."""
    CRITICAL = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3


class NetworkState(Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    NONE = "none"


# Priorities allowed on each network type
ALLOWED_PRIORITIES = {
    NetworkState.WIFI: {Priority.CRITICAL, Priority.HIGH, Priority.MEDIUM, Priority.LOW},
    NetworkState.CELLULAR: {Priority.CRITICAL, Priority.HIGH},
    NetworkState.NONE: set(),
}


@dataclass
class PrefetchItem:
    key: str
    fetcher: Callable[[], Any]
    priority: Priority = Priority.MEDIUM
    ttl: float = CacheTTL.MEDIUM


@dataclass
class DataNeed:
    """One data set a screen loads on open."""
    key: str
    endpoint: str
    priority: Priority
    params: Dict[str, Any] = field(default_factory=dict)


# Screens commonly visited after each screen
SCREEN_PATTERNS: Dict[str, List[str]] = {
    "OwnerDashboard": ["Orders", "Inventory", "Products", "Settings"],
    "StaffDashboard": ["Orders", "Inventory", "StaffManagement"],
    "PMDashboard": ["Orders", "Inventory", "StaffManagement", "Settings"],
    "POSTerminal": ["Orders", "Settings"],
    "Orders": ["POSTerminal", "OwnerDashboard"],
    "Inventory": ["Items", "Products", "PODetail"],
    "Products": ["Items", "Categories", "Bundles"],
    "Items": ["Products", "Inventory"],
}

SCREEN_DATA_NEEDS: Dict[str, List[DataNeed]] = {
    "Orders": [
        DataNeed(keys.management_orders(), "/pos/orders", Priority.HIGH, {"limit": 50}),
    ],
    "Inventory": [
        DataNeed(keys.inventory_stock(), "/inventory-stock/stock", Priority.HIGH),
        DataNeed(keys.vendors(), "/inventory-stock/vendors", Priority.MEDIUM),
    ],
    "Products": [
        DataNeed(keys.store_products(), "/store-products", Priority.HIGH, {"page": 1, "limit": 20}),
        DataNeed(keys.categories(), "/categories", Priority.MEDIUM),
    ],
    "Items": [
        DataNeed(keys.raw_items(), "/inventory/items", Priority.HIGH, {"page": 1, "limit": 30}),
        DataNeed(keys.composite_items(), "/inventory/composite-items", Priority.HIGH),
    ],
    "PODetail": [
        DataNeed(keys.purchase_orders(), "/inventory-stock/purchase-orders", Priority.HIGH),
    ],
    "StaffManagement": [
        DataNeed(keys.staff_users(), "/business-users", Priority.HIGH),
    ],
    "Categories": [
        DataNeed(keys.categories(), "/categories", Priority.HIGH),
    ],
    "Bundles": [
        DataNeed(keys.bundles(), "/bundles", Priority.HIGH),
        DataNeed(keys.store_products(), "/store-products", Priority.MEDIUM, {"page": 1, "limit": 20}),
    ],
    "DeliveryPartners": [
        DataNeed(keys.delivery_partners(), "/delivery/partners", Priority.MEDIUM),
    ],
    "Tables": [
        DataNeed(keys.tables(), "/tables", Priority.MEDIUM),
    ],
    "Drivers": [
        DataNeed(keys.drivers(), "/drivers", Priority.MEDIUM),
    ],
    "Discounts": [
        DataNeed(keys.discounts(), "/discounts", Priority.MEDIUM),
    ],
}


class Prefetcher:
    """
    Priority queue of fetches that fill the cache ahead of navigation.

    Only one thread drains the queue at a time; a concurrent
    process_queue() call returns immediately.
    """

    def __init__(
        self,
        cache: CacheManager,
        client: Optional[ApiClient] = None,
        delay: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            client: Used to build fetchers for SCREEN_DATA_NEEDS
            delay: Pause between consecutive fetches, in seconds
        """
        self.cache = cache
        self.client = client or ApiClient()
        self.delay = delay
        self._sleep = sleep
        self.network_state = NetworkState.WIFI

        self._queue: List[PrefetchItem] = []
        self._queue_lock = threading.Lock()
        self._processing = threading.Lock()

        self._history: List[str] = list(cache.get(NAVIGATION_HISTORY_KEY) or [])

    @property
    def queued_keys(self) -> List[str]:
        with self._queue_lock:
            return [item.key for item in self._queue]

    @property
    def navigation_history(self) -> List[str]:
        return list(self._history)

    def set_network_state(self, state: NetworkState) -> None:
        self.network_state = NetworkState(state)

    def queue_prefetch(self, item: PrefetchItem) -> bool:
        """
        Add an item unless its key is already queued.

        Returns:
            True if the item was queued
        """
        with self._queue_lock:
            if any(q.key == item.key for q in self._queue):
                return False
            self._queue.append(item)
            self._queue.sort(key=lambda q: q.priority)
            return True

    def process_queue(self) -> int:
        """
        Drain the queue in priority order.

        Items the current network state does not allow, and keys already
        cached, are dropped without fetching. Fetch errors are logged.

        Returns:
            Number of items fetched and stored
        """
        if self.network_state == NetworkState.NONE:
            logger.info("No network, skipping prefetch")
            return 0
        if not self._processing.acquire(blocking=False):
            return 0

        fetched = 0
        try:
            while True:
                with self._queue_lock:
                    if not self._queue:
                        break
                    item = self._queue.pop(0)

                if item.priority not in ALLOWED_PRIORITIES[self.network_state]:
                    continue
                if self.cache.get(item.key) is not None:
                    continue

                try:
                    data = item.fetcher()
                    self.cache.set(item.key, data, item.ttl)
                    fetched += 1
                    logger.info(f"Prefetched: {item.key}")
                except Exception as e:
                    logger.warning(f"Failed to prefetch {item.key}: {e}")

                if self.delay > 0:
                    self._sleep(self.delay)
        finally:
            self._processing.release()

        return fetched

    def prefetch(self, screens: List[str]) -> int:
        """Queue the data needs of each screen and process the queue."""
        for screen in screens:
            self._queue_screen(screen)
        return self.process_queue()

    def record_screen_visit(self, screen: str) -> int:
        """
        Record navigation and prefetch data for the likely next screens.

        Returns:
            Number of items fetched
        """
        self._history.append(screen)
        self._history = self._history[-HISTORY_LIMIT:]
        self.cache.set(NAVIGATION_HISTORY_KEY, self._history, CacheTTL.INFINITE)

        likely = list(SCREEN_PATTERNS.get(screen, []))
        for candidate in self._personal_patterns(screen):
            if candidate not in likely:
                likely.append(candidate)

        for candidate in likely:
            self._queue_screen(candidate)
        return self.process_queue()

    def _personal_patterns(self, screen: str, limit: int = 3) -> List[str]:
        """Screens this user most often opened right after screen."""
        followers = Counter(
            nxt for cur, nxt in zip(self._history, self._history[1:]) if cur == screen
        )
        return [name for name, _ in followers.most_common(limit)]

    def _queue_screen(self, screen: str) -> None:
        for need in SCREEN_DATA_NEEDS.get(screen, []):
            self.queue_prefetch(PrefetchItem(
                key=need.key,
                fetcher=self.client.fetcher(need.endpoint, params=need.params or None),
                priority=need.priority,
                ttl=get_ttl_for_key(need.key)[0],
            ))
