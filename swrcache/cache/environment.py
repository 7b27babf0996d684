"""
Environment signals consumed by the cache.

The host application decides whether it is visible and online and pushes
focus-regained events; the cache only reads the predicates and reacts to
the events.
"""
import threading
import time
import logging
from functools import wraps
from typing import Any, Callable, List, Optional

logger = logging.getLogger("cache.environment")

# Connection types treated as slow (<= 70Kbps)
SLOW_CONNECTION_TYPES = ("slow-2g", "2g")


class Environment:
    """
    Visibility, connectivity and focus events for one process.

    Defaults to visible and online. Hosts either flip the flags
    (``set_visible`` / ``set_online``) or pass their own predicates.
    """

    def __init__(
        self,
        is_visible: Optional[Callable[[], bool]] = None,
        is_online: Optional[Callable[[], bool]] = None,
        effective_connection_type: Optional[str] = None,
    ):
        self._visible = True
        self._online = True
        self._is_visible = is_visible
        self._is_online = is_online
        self.effective_connection_type = effective_connection_type
        self._focus_listeners: List[Callable[[], Any]] = []
        self._lock = threading.Lock()

    def is_visible(self) -> bool:
        if self._is_visible is not None:
            return bool(self._is_visible())
        return self._visible

    def is_online(self) -> bool:
        if self._is_online is not None:
            return bool(self._is_online())
        return self._online

    def set_visible(self, visible: bool) -> None:
        self._visible = visible

    def set_online(self, online: bool) -> None:
        self._online = online

    @property
    def is_slow_connection(self) -> bool:
        return self.effective_connection_type in SLOW_CONNECTION_TYPES

    def add_focus_listener(self, listener: Callable[[], Any]) -> None:
        with self._lock:
            if any(existing is listener for existing in self._focus_listeners):
                return
            self._focus_listeners.append(listener)

    def remove_focus_listener(self, listener: Callable[[], Any]) -> None:
        with self._lock:
            self._focus_listeners = [
                existing for existing in self._focus_listeners if existing is not listener
            ]

    def emit_focus(self) -> int:
        """
        Signal that the host regained focus or visibility.

        Returns:
            Number of listeners notified
        """
        with self._lock:
            listeners = list(self._focus_listeners)
        logger.debug(f"Focus event -> {len(listeners)} listeners")
        for listener in listeners:
            listener()
        return len(listeners)


def throttle(
    fn: Callable[[], Any],
    interval: float,
    clock: Callable[[], float] = time.monotonic,
) -> Callable[[], Any]:
    """
    Leading-edge throttle: run ``fn`` at most once per ``interval`` seconds.

    Calls arriving inside the window are dropped, not deferred.
    """
    lock = threading.Lock()
    last_run: List[Optional[float]] = [None]

    @wraps(fn)
    def throttled() -> Any:
        now = clock()
        with lock:
            if last_run[0] is not None and now - last_run[0] < interval:
                return None
            last_run[0] = now
        return fn()

    return throttled
