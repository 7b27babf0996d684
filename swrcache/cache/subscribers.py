"""
Per-key subscriber lists.

Two independent kinds of subscription exist for every key:
- focus revalidators: zero-argument callbacks run when the environment
  regains focus (each engine throttles its own callback before registering)
- cache listeners: called with (should_revalidate, data, error, settled)
  whenever the cached value for the key changes
"""
import threading
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("cache.subscribers")

FocusRevalidator = Callable[[], Any]
CacheListener = Callable[..., Any]


def _remove_by_identity(callbacks: List[Callable], callback: Callable) -> bool:
    for i, existing in enumerate(callbacks):
        if existing is callback:
            del callbacks[i]
            return True
    return False


class SubscriberRegistry:
    """
    Thread-safe registry of focus revalidators and cache listeners.

    Lists are created lazily and left empty after the last removal.
    Callbacks always run on a snapshot taken outside the lock, so they may
    subscribe or unsubscribe freely while being notified.
    """

    def __init__(self):
        self._focus: Dict[str, List[FocusRevalidator]] = defaultdict(list)
        self._listeners: Dict[str, List[CacheListener]] = defaultdict(list)
        self._lock = threading.Lock()

    def add_focus_revalidator(self, key: str, callback: FocusRevalidator) -> None:
        with self._lock:
            self._focus[key].append(callback)

    def remove_focus_revalidator(self, key: str, callback: FocusRevalidator) -> bool:
        with self._lock:
            return _remove_by_identity(self._focus.get(key, []), callback)

    def add_cache_listener(self, key: str, callback: CacheListener) -> None:
        with self._lock:
            self._listeners[key].append(callback)

    def remove_cache_listener(self, key: str, callback: CacheListener) -> bool:
        with self._lock:
            return _remove_by_identity(self._listeners.get(key, []), callback)

    def focus_revalidators(self, key: Optional[str] = None) -> List[FocusRevalidator]:
        """Snapshot of focus revalidators for one key, or for every key."""
        with self._lock:
            if key is not None:
                return list(self._focus.get(key, []))
            return [cb for callbacks in self._focus.values() for cb in callbacks]

    def cache_listeners(self, key: str) -> List[CacheListener]:
        """Snapshot of cache listeners for a key."""
        with self._lock:
            return list(self._listeners.get(key, []))

    def broadcast(
        self,
        key: str,
        should_revalidate: bool,
        data: Any,
        error: Optional[BaseException],
        settled: bool = False,
    ) -> int:
        """
        Notify every cache listener of ``key``.

        Args:
            key: Cache key that changed
            should_revalidate: Ask each listener to revalidate on its own
            data: Current cached data for the key
            error: Current cached error for the key
            settled: True when the change comes from a finished fetch

        Returns:
            Number of listeners notified
        """
        listeners = self.cache_listeners(key)
        for listener in listeners:
            try:
                listener(should_revalidate, data, error, settled)
            except Exception:
                logger.exception(f"Cache listener failed for {key}")
        if listeners:
            logger.debug(f"Broadcast {key} to {len(listeners)} listeners")
        return len(listeners)

    def get_stats(self) -> Dict[str, Any]:
        """Get registry statistics."""
        with self._lock:
            return {
                "focus_revalidators": sum(len(v) for v in self._focus.values()),
                "cache_listeners": sum(len(v) for v in self._listeners.values()),
                "subscribed_keys": sorted(k for k, v in self._listeners.items() if v),
            }
