"""
Main cache orchestration: stale-while-revalidate with shared observers.
"""
import asyncio
import inspect
import threading
import time
import logging
from typing import Any, Callable, Dict, Optional, Sequence

from config.settings import Settings, settings

from .coalescer import InFlightRequest, RequestCoalescer
from .core import FetchState
from .engine import RevalidationEngine, StateCallback
from .environment import Environment
from .keys import normalize_key
from .options import FetchConfig, default_config, resolve_config
from .store import CacheStore
from .subscribers import SubscriberRegistry

logger = logging.getLogger("cache.manager")


async def _await(awaitable: Any) -> Any:
    return await awaitable


def call_fetcher(
    fetcher: Callable[..., Any],
    key: str,
    args: Optional[Sequence[Any]] = None,
) -> Any:
    """
    Invoke a fetch function as ``fetcher(key, *args)``.

    Coroutine functions are driven to completion on the calling worker.
    """
    result = fetcher(key, *args) if args is not None else fetcher(key)
    if inspect.isawaitable(result):
        result = asyncio.run(_await(result))
    return result


class CacheManager:
    """
    Owns everything revalidation engines share:
    - Cache store (data and error namespaces)
    - Request coalescer (single-flight fetches on a worker pool)
    - Subscriber registry (focus revalidators, cache listeners)
    - Environment (visibility, connectivity, focus events)

    One instance per application root. Tests build their own with
    injected parts and shut it down afterwards.
    """

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        coalescer: Optional[RequestCoalescer] = None,
        subscribers: Optional[SubscriberRegistry] = None,
        environment: Optional[Environment] = None,
        app_settings: Optional[Settings] = None,
    ):
        """
        Initialize the cache manager.

        Args:
            store: Cache store (fresh one if omitted)
            coalescer: Single-flight registry (sized from settings if omitted)
            subscribers: Subscriber registry (fresh one if omitted)
            environment: Host environment signals (visible and online if omitted)
            app_settings: Settings for defaults (module settings if omitted)
        """
        self._settings = app_settings or settings
        self.store = store or CacheStore()
        self.coalescer = coalescer or RequestCoalescer(
            max_workers=self._settings.revalidation_workers,
            timeout=self._settings.coalesce_timeout_seconds,
        )
        self.subscribers = subscribers or SubscriberRegistry()
        self.environment = environment or Environment()
        self.defaults: FetchConfig = default_config(self._settings, self.environment)

        self._engines: Dict[int, RevalidationEngine] = {}
        self._engines_lock = threading.Lock()

        self._stats = {
            "fetches": 0,
            "fetch_failures": 0,
            "discarded_results": 0,
            "mutations": 0,
            "focus_events": 0,
        }
        self._stats_lock = threading.Lock()

        # Subscribe once; fans out to every per-key focus revalidator
        self._focus_listener = self.revalidate_on_focus
        self.environment.add_focus_listener(self._focus_listener)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def activate(
        self,
        key_spec: Any,
        fetcher: Optional[Callable[..., Any]] = None,
        observer_id: Optional[str] = None,
        on_change: Optional[StateCallback] = None,
        **options: Any,
    ) -> RevalidationEngine:
        """
        Start observing a key.

        Args:
            key_spec: Literal key, argument list, or key-producing function
            fetcher: Fetch function, overriding defaults and context
            observer_id: Name for the observer (generated if omitted)
            on_change: Called with every new FetchState
            **options: Per-call FetchConfig overrides

        Returns:
            The active engine; read ``data``/``error``/``is_validating`` from
            it, call ``revalidate()`` on it, and ``deactivate()`` when done

        Raises:
            TypeError: If an option name is unknown
            ValueError: If no fetcher is configured anywhere
        """
        if fetcher is not None:
            options["fetcher"] = fetcher
        config = resolve_config(self.defaults, options)
        if config.fetcher is None:
            raise ValueError("No fetcher configured: pass fetcher= or use config_context(fetcher=...)")

        engine = RevalidationEngine(self, key_spec, config, observer_id=observer_id)
        if on_change is not None:
            engine.subscribe(on_change)
        engine.activate()
        return engine

    use_fetch = activate

    def deactivate(self, engine: RevalidationEngine) -> None:
        engine.deactivate()

    def _track(self, engine: RevalidationEngine) -> None:
        with self._engines_lock:
            self._engines[id(engine)] = engine

    def _untrack(self, engine: RevalidationEngine) -> None:
        with self._engines_lock:
            self._engines.pop(id(engine), None)

    @property
    def active_engines(self) -> int:
        with self._engines_lock:
            return len(self._engines)

    def defer(self, fn: Callable[[], Any]) -> None:
        """Run ``fn`` on the worker pool instead of the caller's thread."""
        self.coalescer.submit(fn)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def start_fetch(
        self,
        key: str,
        args: Optional[Sequence[Any]],
        fetcher: Callable[..., Any],
    ) -> InFlightRequest:
        """Join the in-flight fetch for ``key`` or start one."""
        return self.coalescer.run(key, lambda: self._fetch_and_store(key, args, fetcher))

    def _fetch_and_store(
        self,
        key: str,
        args: Optional[Sequence[Any]],
        fetcher: Callable[..., Any],
    ) -> Any:
        """Run the fetch, write its outcome to the store, and broadcast it."""
        started_at = time.monotonic()
        self._bump("fetches")
        try:
            data = call_fetcher(fetcher, key, args)
        except Exception as e:
            self._bump("fetch_failures")
            # Stale data stays; only the error namespace changes
            self.store.set_error(key, e)
            self.subscribers.broadcast(key, False, self.store.get(key), e, settled=True)
            raise

        mutated_at = self.store.mutated_at(key)
        if mutated_at is not None and mutated_at >= started_at:
            self._bump("discarded_results")
            logger.info(f"Keeping newer data for {key}: mutated while fetching")
        else:
            self.store.set(key, data)
        self.store.clear_error(key)

        self.subscribers.broadcast(key, False, self.store.get(key), None, settled=True)
        return data

    # ------------------------------------------------------------------
    # Imperative cache access
    # ------------------------------------------------------------------

    def get(self, key_spec: Any) -> FetchState:
        """Cached data and error for a key, without observing it."""
        key, _ = normalize_key(key_spec)
        if not key:
            return FetchState()
        return FetchState(
            data=self.store.get(key),
            error=self.store.get_error(key),
            is_validating=self.coalescer.pending(key) is not None,
        )

    def mutate(self, key_spec: Any, data: Any, should_revalidate: bool = True) -> str:
        """
        Replace the cached data for a key from outside any observer.

        Every observer of the key adopts ``data`` at once; with
        ``should_revalidate`` they also fetch again.

        Returns:
            The normalized cache key ('' if the key is disabled)
        """
        key, _ = normalize_key(key_spec)
        if not key:
            return key
        self.store.set(key, data)
        self.store.mark_mutated(key)
        self._bump("mutations")
        logger.info(f"Mutated cache: {key} (revalidate={should_revalidate})")
        self.subscribers.broadcast(key, should_revalidate, data, self.store.get_error(key))
        return key

    def trigger(self, key_spec: Any, should_revalidate: bool = True) -> int:
        """
        Push the current cached value to every observer of a key.

        Returns:
            Number of observers notified
        """
        key, _ = normalize_key(key_spec)
        if not key:
            return 0
        return self.subscribers.broadcast(
            key, should_revalidate, self.store.get(key), self.store.get_error(key)
        )

    def revalidate_on_focus(self) -> int:
        """
        Run every registered focus revalidator, for every key.

        Each revalidator is throttled and checks visibility/connectivity
        on its own.

        Returns:
            Number of revalidators invoked
        """
        self._bump("focus_events")
        revalidators = self.subscribers.focus_revalidators()
        for revalidator in revalidators:
            try:
                revalidator()
            except Exception:
                logger.exception("Focus revalidation failed")
        return len(revalidators)

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        return self.store.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        return {
            **self.store.get_stats(),
            **stats,
            "active_engines": self.active_engines,
            "coalescer": self.coalescer.get_stats(),
            "subscribers": self.subscribers.get_stats(),
        }

    def _bump(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def shutdown(self, wait: bool = True) -> None:
        """Deactivate every engine, stop listening for focus, stop the pool."""
        with self._engines_lock:
            engines = list(self._engines.values())
        for engine in engines:
            engine.deactivate()
        self.environment.remove_focus_listener(self._focus_listener)
        self.coalescer.shutdown(wait=wait)


# Global cache manager instance
_cache_manager: Optional[CacheManager] = None
_cache_manager_lock = threading.Lock()


def get_cache_manager() -> CacheManager:
    """Get or create the global cache manager."""
    global _cache_manager
    with _cache_manager_lock:
        if _cache_manager is None:
            _cache_manager = CacheManager()
        return _cache_manager


def reset_cache_manager() -> None:
    """Shut down and drop the global cache manager (next access builds a new one)."""
    global _cache_manager
    with _cache_manager_lock:
        manager, _cache_manager = _cache_manager, None
    if manager is not None:
        manager.shutdown(wait=False)
