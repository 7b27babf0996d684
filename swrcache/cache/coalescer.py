"""
Request coalescing to prevent duplicate fetches.

When several observers ask for the same key while a fetch is in flight,
only one fetch runs and every caller shares its result.
"""
import threading
import time
import logging
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Dict, Optional, Callable, Any
from dataclasses import dataclass, field

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress fetch."""
    key: str
    future: Future = field(default_factory=Future)
    started_at: float = field(default_factory=time.monotonic)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Single-flight registry: at most one fetch per cache key.

    Pattern:
    - First request for a key submits the fetch to the worker pool
    - Subsequent requests for the same key join the pending record
    - The record is dropped once the fetch settles (success or failure),
      before its future resolves, so the next request starts a fresh fetch

    Usage:
        coalescer = RequestCoalescer()
        in_flight = coalescer.run("user:42", lambda: load_user(42))
        in_flight.future.add_done_callback(...)
    """

    def __init__(
        self,
        executor: Optional[ThreadPoolExecutor] = None,
        max_workers: int = 4,
        timeout: float = 30.0,
    ):
        """
        Initialize the coalescer.

        Args:
            executor: Worker pool to run fetches on (created if omitted)
            max_workers: Pool size when the coalescer creates its own pool
            timeout: Max seconds ``get_or_fetch`` waits for a result
        """
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="cache-revalidate",
        )
        self._stats = {"started": 0, "coalesced": 0, "failed": 0}

    def run(self, cache_key: str, fetch_fn: Callable[[], Any]) -> InFlightRequest:
        """
        Either join an existing in-flight fetch or start a new one.

        Args:
            cache_key: Unique key for this request
            fetch_fn: Function to call if we need to fetch

        Returns:
            The in-flight record; its ``future`` resolves with the fetch result
            or the fetch error
        """
        with self._lock:
            in_flight = self._in_flight.get(cache_key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                self._stats["coalesced"] += 1
                logger.debug(
                    f"Coalescing request for {cache_key} "
                    f"(waiters: {in_flight.waiter_count})"
                )
                return in_flight

            in_flight = InFlightRequest(key=cache_key)
            self._in_flight[cache_key] = in_flight
            self._stats["started"] += 1

        logger.debug(f"Initiating fetch for {cache_key}")
        try:
            self._executor.submit(self._execute, in_flight, fetch_fn)
        except RuntimeError:
            # Pool already shut down
            self._discard(in_flight)
            raise
        return in_flight

    def _execute(self, in_flight: InFlightRequest, fetch_fn: Callable[[], Any]) -> None:
        result = None
        error: Optional[BaseException] = None
        try:
            result = fetch_fn()
        except Exception as e:
            error = e
            logger.warning(f"Fetch failed for {in_flight.key}: {e}")
        finally:
            self._discard(in_flight)

        if error is not None:
            with self._lock:
                self._stats["failed"] += 1
            in_flight.future.set_exception(error)
        else:
            in_flight.future.set_result(result)

    def _discard(self, in_flight: InFlightRequest) -> None:
        with self._lock:
            if self._in_flight.get(in_flight.key) is in_flight:
                del self._in_flight[in_flight.key]

    def get_or_fetch(self, cache_key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Blocking variant of ``run``.

        Raises:
            TimeoutError: If waiting for the in-flight fetch times out
            Exception: Any error from fetch_fn is propagated
        """
        in_flight = self.run(cache_key, fetch_fn)
        try:
            return in_flight.future.result(timeout=self._timeout)
        except FutureTimeoutError:
            logger.error(f"Timeout waiting for coalesced request: {cache_key}")
            raise TimeoutError(f"Request for {cache_key} timed out after {self._timeout}s")

    def pending(self, cache_key: str) -> Optional[InFlightRequest]:
        """The in-flight record for a key, if any."""
        with self._lock:
            return self._in_flight.get(cache_key)

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run deferred work on the same worker pool as fetches."""
        return self._executor.submit(fn, *args)

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

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
                **self._stats,
            }
