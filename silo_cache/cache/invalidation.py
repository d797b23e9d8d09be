"""
Per-key invalidation listeners.
"""
import threading
import logging
from collections import defaultdict
from typing import Callable, Dict, Optional, Set

logger = logging.getLogger("cache.invalidation")

Listener = Callable[[], None]


class InvalidationBus:
    """
    Registry of callbacks to run when a cache key is invalidated.

    Each key holds a set of callbacks. Notification iterates over a
    snapshot taken at call time and runs callbacks outside the lock,
    so a callback may subscribe or unsubscribe without deadlocking.
    """

    def __init__(self):
        self._listeners: Dict[str, Set[Listener]] = defaultdict(set)
        self._lock = threading.Lock()

    def subscribe(self, key: str, callback: Listener) -> Callable[[], None]:
        """
        Register callback for key.

        Returns:
            A function that removes this callback. Calling it more than
            once is harmless.
        """
        with self._lock:
            self._listeners[key].add(callback)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(key)
                if listeners is None:
                    return
                listeners.discard(callback)
                if not listeners:
                    del self._listeners[key]

        return unsubscribe

    def notify(self, key: str) -> int:
        """
        Call every listener registered for key.

        Returns:
            Number of listeners invoked
        """
        with self._lock:
            snapshot = list(self._listeners.get(key, ()))

        for callback in snapshot:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Invalidation listener error for {key}: {e}", exc_info=True)
        return len(snapshot)

    def listener_count(self, key: Optional[str] = None) -> int:
        with self._lock:
            if key is not None:
                return len(self._listeners.get(key, ()))
            return sum(len(s) for s in self._listeners.values())

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()
