"""
Revalidation engine: one observer's view of one key.

An engine serves whatever the cache holds for its key straight away,
revalidates in the background, and keeps its (data, error, is_validating)
snapshot in sync with every other engine watching the same key.
"""
import itertools
import threading
import logging
from concurrent.futures import Future
from dataclasses import replace
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence

from .core import EngineStatus, FetchState, SettlementOutcome
from .environment import throttle
from .keys import normalize_key
from .options import FetchConfig

if TYPE_CHECKING:
    from .manager import CacheManager

logger = logging.getLogger("cache.engine")

_observer_ids = itertools.count(1)

StateCallback = Callable[[FetchState], Any]


class RevalidationEngine:
    """
    State machine driving fetch -> cache -> broadcast for one observer.

    States: IDLE -> VALIDATING -> IDLE. Settling records the outcome in
    ``last_settlement`` (success or error) on the way back to IDLE.

    Engines are created through ``CacheManager.activate``; the manager owns
    the shared store, in-flight registry and subscriber lists.
    """

    def __init__(
        self,
        manager: "CacheManager",
        key_spec: Any,
        config: FetchConfig,
        observer_id: Optional[str] = None,
    ):
        self._manager = manager
        self._key_spec = key_spec
        self._config = config
        self.observer_id = observer_id or f"observer-{next(_observer_ids)}"

        self.key: str = ""
        self.args: Optional[Sequence[Any]] = None
        self._state = FetchState()
        self._status = EngineStatus.IDLE
        self.last_settlement: Optional[SettlementOutcome] = None
        self._active = False
        self._lock = threading.RLock()

        self._callbacks: List[StateCallback] = []
        self._cache_listener: Optional[Callable[..., Any]] = None
        # Bound once so add/remove see the same callable
        self._focus_revalidator = self._revalidate_on_focus
        self._throttled_revalidate = throttle(self.revalidate, config.focus_throttle_interval)
        self._loading_timer: Optional[threading.Timer] = None
        self._pending: Optional[Future] = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def config(self) -> FetchConfig:
        return self._config

    @property
    def state(self) -> FetchState:
        """Current snapshot; never a mix of two updates."""
        return self._state

    @property
    def data(self) -> Any:
        return self._state.data

    @property
    def error(self) -> Optional[BaseException]:
        return self._state.error

    @property
    def is_validating(self) -> bool:
        return self._state.is_validating

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        return self._active

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """
        Register a callback receiving every new FetchState.

        Returns:
            A function that removes the callback
        """
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                self._callbacks = [cb for cb in self._callbacks if cb is not callback]

        return unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate(self) -> FetchState:
        """
        Start observing the key: adopt the cached snapshot and revalidate.

        Revalidation is deferred to the worker pool when there is already
        something to show, and started immediately otherwise.
        """
        subscribers = self._manager.subscribers
        store = self._manager.store

        with self._lock:
            if self._active:
                return self._state
            key, args = normalize_key(self._key_spec)
            self.key, self.args = key, args
            self._active = True
            self._status = EngineStatus.IDLE

            data, error = self._config.initial_data, None
            if key:
                cached = store.get(key)
                if cached is not None:
                    data = cached
                error = store.get_error(key)
            snapshot = self._replace_state(data=data, error=error, is_validating=False)

            if key:
                self._cache_listener = partial(self._on_cache_update, key)
                subscribers.add_cache_listener(key, self._cache_listener)
                if self._config.revalidate_on_focus:
                    subscribers.add_focus_revalidator(key, self._focus_revalidator)

        self._manager._track(self)
        if snapshot is not None:
            self._emit(snapshot)

        if not key:
            logger.debug(f"{self.observer_id}: key disabled, not fetching")
        elif data is not None:
            self._manager.defer(self.revalidate)
        else:
            self.revalidate()
        return self._state

    def deactivate(self) -> None:
        """
        Stop observing: unsubscribe and ignore any settlement still to come.

        The fetch itself keeps running; the cache and other observers still
        get its result.
        """
        subscribers = self._manager.subscribers
        with self._lock:
            if not self._active:
                return
            self._active = False
            key = self.key
            self._cancel_loading_timer()
            self._resolve(self._pending, False)
            self._pending = None
            self._status = EngineStatus.IDLE

            if key:
                subscribers.remove_cache_listener(key, self._cache_listener)
                subscribers.remove_focus_revalidator(key, self._focus_revalidator)
            self._cache_listener = None

        self._manager._untrack(self)
        logger.debug(f"{self.observer_id}: deactivated from '{key}'")

    def set_key(self, key_spec: Any) -> FetchState:
        """Switch to another key (deactivate the old one, activate the new one)."""
        key, _ = normalize_key(key_spec)
        with self._lock:
            self._key_spec = key_spec
            if self._active and key == self.key:
                return self._state
        self.deactivate()
        return self.activate()

    # ------------------------------------------------------------------
    # Revalidation
    # ------------------------------------------------------------------

    def revalidate(self) -> Optional[Future]:
        """
        Fetch the key again, joining any fetch already in flight.

        Returns:
            A future resolving to True once this engine applied the result,
            False if the result was discarded; None when nothing was started
            (key disabled or engine inactive)
        """
        with self._lock:
            if not self._active or not self.key:
                return None
            if self._status is EngineStatus.VALIDATING and self._pending is not None:
                return self._pending

            key, args = self.key, self.args
            done: Future = Future()
            self._pending = done
            self._status = EngineStatus.VALIDATING
            snapshot = self._replace_state(is_validating=True)
            self._arm_loading_timer(key)

        logger.debug(f"{self.observer_id}: revalidating '{key}'")
        if snapshot is not None:
            self._emit(snapshot)

        try:
            in_flight = self._manager.start_fetch(key, args, self._config.fetcher)
        except RuntimeError:
            with self._lock:
                self._cancel_loading_timer()
                self._status = EngineStatus.IDLE
                self._pending = None
                self._replace_state(is_validating=False)
                self._resolve(done, False)
            raise

        in_flight.future.add_done_callback(partial(self._settle, key, done))
        return done

    def _settle(self, key: str, done: Future, fetched: Future) -> None:
        config = self._config
        succeeded = False
        result: Any = None
        new_error: Optional[BaseException] = None

        with self._lock:
            if not self._active or self.key != key or self._pending is not done:
                logger.debug(f"{self.observer_id}: discarding settlement for '{key}'")
                self._resolve(done, False)
                return

            self._cancel_loading_timer()
            self._pending = None
            error = fetched.exception()

            if error is None:
                succeeded = True
                result = fetched.result()
                # Current cache value wins over the fetched one (it may be a newer mutation)
                data = self._manager.store.get(key, result)
                self.last_settlement = SettlementOutcome.SUCCESS
                snapshot = self._replace_state(data=data, error=None, is_validating=False)
            else:
                self.last_settlement = SettlementOutcome.ERROR
                if error is not self._state.error:
                    new_error = error
                snapshot = self._replace_state(error=error, is_validating=False)

            self._status = EngineStatus.IDLE

        if succeeded:
            self._invoke(config.on_success, result, key, config)
        if snapshot is not None:
            self._emit(snapshot)
        if new_error is not None:
            self._invoke(config.on_error, new_error, key, config)

        with self._lock:
            self._resolve(done, True)

    def _on_cache_update(
        self,
        key: str,
        should_revalidate: bool,
        data: Any,
        error: Optional[BaseException],
        settled: bool = False,
    ) -> None:
        with self._lock:
            if not self._active or self.key != key:
                return
            # Own settlement is on its way; applying this now would show a half-finished state
            if settled and self._status is EngineStatus.VALIDATING:
                return
            snapshot = self._replace_state(data=data, error=error)

        if snapshot is not None:
            self._emit(snapshot)
        if should_revalidate:
            self.revalidate()

    def _revalidate_on_focus(self) -> Optional[Future]:
        environment = self._manager.environment
        # Checked before the throttle so ignored events do not use up the window
        if not environment.is_visible() or not environment.is_online():
            return None
        return self._throttled_revalidate()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _arm_loading_timer(self, key: str) -> None:
        self._cancel_loading_timer()
        timer = threading.Timer(self._config.loading_timeout, self._on_loading_timeout, args=(key,))
        timer.daemon = True
        self._loading_timer = timer
        timer.start()

    def _cancel_loading_timer(self) -> None:
        if self._loading_timer is not None:
            self._loading_timer.cancel()
            self._loading_timer = None

    def _on_loading_timeout(self, key: str) -> None:
        with self._lock:
            if not self._active or self.key != key or self._status is not EngineStatus.VALIDATING:
                return
        logger.info(f"Slow loading for '{key}' (> {self._config.loading_timeout}s)")
        self._invoke(self._config.on_loading_slow, key, self._config)

    def _replace_state(self, **changes: Any) -> Optional[FetchState]:
        """Swap in a new snapshot; returns it, or None if nothing changed."""
        current = self._state
        if all(getattr(current, name) is value for name, value in changes.items()):
            return None
        self._state = replace(current, **changes)
        return self._state

    def _emit(self, snapshot: FetchState) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception:
                logger.exception(f"{self.observer_id}: state callback failed")

    def _invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception(f"{self.observer_id}: {getattr(callback, '__name__', 'callback')} failed")

    @staticmethod
    def _resolve(done: Optional[Future], applied: bool) -> None:
        if done is not None and not done.done():
            done.set_result(applied)

    def __repr__(self) -> str:
        return (
            f"RevalidationEngine(observer_id={self.observer_id!r}, key={self.key!r}, "
            f"status={self._status.value}, active={self._active})"
        )
