"""
Request coalescing to prevent duplicate fetches for the same key.

When multiple concurrent callers ask for the same key, only one
fetch runs and all callers share its outcome.
"""
import threading
import time
import logging
from typing import Dict, Optional, Callable, Any
from dataclasses import dataclass, field

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress fetch."""
    event: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same key share one fetch.

    Pattern:
    - First request for a key registers itself and runs the fetch
    - Subsequent requests for the same key wait on the Event
    - When the fetch settles, all waiters get the same result or exception
    - The registration is removed in a finally block, so a failed fetch
      never blocks later calls

    Usage:
        coalescer = RequestCoalescer()
        result = coalescer.get_or_fetch(
            key="products",
            fetch_fn=lambda: load_products(),
        )
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Initialize the coalescer.

        Args:
            timeout: Max seconds a waiter blocks on an in-flight request.
                None waits until the fetch settles.
        """
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._lock = threading.Lock()
        self._timeout = timeout

    def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        force: bool = False,
    ) -> Any:
        """
        Either join an existing in-flight request or initiate a new one.

        Args:
            key: Unique key for this request
            fetch_fn: Function to call if we need to fetch
            force: Start a new fetch even if one is in flight. The new
                request replaces the old registration for later joiners.

        Returns:
            The fetched data (shared among all concurrent callers)

        Raises:
            TimeoutError: If waiting for an in-flight request times out
            Exception: Any error from fetch_fn is propagated
        """
        with self._lock:
            in_flight = None if force else self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                logger.debug(
                    f"Coalescing request for {key} "
                    f"(waiters: {in_flight.waiter_count})"
                )
                is_initiator = False
            else:
                in_flight = InFlightRequest()
                self._in_flight[key] = in_flight
                is_initiator = True
                logger.debug(f"Initiating fetch for {key}")

        if is_initiator:
            try:
                in_flight.result = fetch_fn()
            except Exception as e:
                in_flight.error = e
                logger.warning(f"Fetch failed for {key}: {e}")
            finally:
                in_flight.event.set()
                self._release(key, in_flight)

            if in_flight.error is not None:
                raise in_flight.error
            return in_flight.result

        completed = in_flight.event.wait(timeout=self._timeout)

        if not completed:
            logger.error(f"Timeout waiting for coalesced request: {key}")
            # Drop the stuck registration so the next caller starts over
            self._release(key, in_flight)
            raise TimeoutError(f"Request for {key} timed out after {self._timeout}s")

        if in_flight.error is not None:
            raise in_flight.error

        return in_flight.result

    def is_pending(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def _release(self, key: str, in_flight: InFlightRequest) -> None:
        """Remove the registration only if it is still the caller's own."""
        with self._lock:
            if self._in_flight.get(key) is in_flight:
                del self._in_flight[key]

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
            }
