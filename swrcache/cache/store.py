"""
Process-wide cache store.

Data and errors share one mapping; errors live under ``err@<key>`` so both
can be cached independently. Entries never expire: they are only replaced
by a newer revalidation or mutation, or dropped by ``clear()``.
"""
import threading
import time
import logging
from typing import Any, Dict, Optional

from .core import ERROR_KEY_PREFIX, error_key

logger = logging.getLogger("cache.store")


class CacheStore:
    """
    Thread-safe key/value store shared by every engine.

    Also remembers when each key was last written from outside a fetch
    (``mutate``), so a fetch that started earlier can't overwrite it.
    """

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._mutated_at: Dict[str, float] = {}
        self._lock = threading.RLock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._entries.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    def delete(self, key: str) -> bool:
        """
        Remove a single entry.

        Returns:
            True if entry was found and removed
        """
        with self._lock:
            if key in self._entries:
                del self._entries[key]
                return True
            return False

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # Error namespace

    def get_error(self, key: str) -> Optional[BaseException]:
        return self.get(error_key(key))

    def set_error(self, key: str, error: BaseException) -> None:
        self.set(error_key(key), error)

    def clear_error(self, key: str) -> None:
        self.delete(error_key(key))

    # Mutation tracking

    def mark_mutated(self, key: str) -> float:
        """Record an out-of-band write for ``key`` and return its timestamp."""
        now = time.monotonic()
        with self._lock:
            self._mutated_at[key] = now
        return now

    def mutated_at(self, key: str) -> Optional[float]:
        with self._lock:
            return self._mutated_at.get(key)

    def clear(self) -> int:
        """
        Clear all cache entries, data and errors alike.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._mutated_at.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def get_stats(self) -> Dict[str, int]:
        """Get store statistics."""
        with self._lock:
            errors = sum(1 for k in self._entries if k.startswith(ERROR_KEY_PREFIX))
            return {
                "entries": len(self._entries) - errors,
                "errors": errors,
            }
