"""
Bounded in-process cache with least-recently-used eviction.

Entries live in a dict for O(1) lookup and in a doubly linked list that
keeps them in recency order (head = most recent, tail = next to evict).
"""
import threading
import logging
from typing import Dict, List, Optional

from .core import CacheEntry

logger = logging.getLogger("cache.lru")


class LRUNode:
    """Linked list node; only MemoryCache holds references to these."""

    __slots__ = ("key", "entry", "prev", "next")

    def __init__(self, key: str, entry: CacheEntry):
        self.key = key
        self.entry = entry
        self.prev: Optional["LRUNode"] = None
        self.next: Optional["LRUNode"] = None

    def __repr__(self):
        return f"<LRUNode(key='{self.key}')>"


class MemoryCache:
    """
    Thread-safe LRU map of key -> CacheEntry.

    Every public method holds the lock for the whole map+list update,
    so get/set/remove/evict are atomic with respect to each other.
    A capacity of 0 is allowed: every set is evicted immediately.
    """

    def __init__(self, capacity: int = 100):
        if capacity < 0:
            raise ValueError("capacity cannot be negative")
        self._capacity = capacity
        self._nodes: Dict[str, LRUNode] = {}
        self._head: Optional[LRUNode] = None
        self._tail: Optional[LRUNode] = None
        self._lock = threading.RLock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._nodes

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry and mark it most recently used."""
        with self._lock:
            node = self._nodes.get(key)
            if node is None:
                return None
            self._move_to_front(node)
            return node.entry

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the entry without touching recency."""
        with self._lock:
            node = self._nodes.get(key)
            return node.entry if node else None

    def set(self, key: str, entry: CacheEntry) -> List[str]:
        """
        Insert or replace an entry.

        Returns:
            Keys evicted to stay within capacity (may include key itself
            when capacity is 0)
        """
        with self._lock:
            node = self._nodes.get(key)
            if node is not None:
                node.entry = entry
                self._move_to_front(node)
                return []

            node = LRUNode(key, entry)
            self._add_to_front(node)
            self._nodes[key] = node

            evicted = []
            while len(self._nodes) > self._capacity and self._tail is not None:
                evicted.append(self._evict_tail())
            if evicted:
                logger.debug(f"Evicted {len(evicted)} entries: {evicted}")
            return evicted

    def remove(self, key: str) -> bool:
        """Unlink a key. Returns True if it was present."""
        with self._lock:
            node = self._nodes.pop(key, None)
            if node is None:
                return False
            self._unlink(node)
            return True

    def keys(self) -> List[str]:
        """Snapshot of keys, most recently used first."""
        with self._lock:
            result = []
            node = self._head
            while node is not None:
                result.append(node.key)
                node = node.next
            return result

    def clear(self) -> int:
        with self._lock:
            count = len(self._nodes)
            self._nodes.clear()
            self._head = None
            self._tail = None
            return count

    # =========================================================================
    # Linked list surgery (caller holds the lock)
    # =========================================================================

    def _add_to_front(self, node: LRUNode) -> None:
        node.prev = None
        node.next = self._head
        if self._head is not None:
            self._head.prev = node
        self._head = node
        if self._tail is None:
            self._tail = node

    def _unlink(self, node: LRUNode) -> None:
        if node.prev is not None:
            node.prev.next = node.next
        else:
            self._head = node.next

        if node.next is not None:
            node.next.prev = node.prev
        else:
            self._tail = node.prev

        node.prev = None
        node.next = None

    def _move_to_front(self, node: LRUNode) -> None:
        if node is self._head:
            return
        self._unlink(node)
        self._add_to_front(node)

    def _evict_tail(self) -> str:
        node = self._tail
        self._unlink(node)
        del self._nodes[node.key]
        return node.key
