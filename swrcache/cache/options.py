"""
Fetch options and their layering.

Merge order, lowest to highest: built-in defaults (from settings),
ambient ``config_context()`` overrides, per-call options.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from config.settings import Settings, settings as default_settings

from .environment import Environment


def _noop(*args: Any) -> None:
    return None


@dataclass(frozen=True)
class FetchConfig:
    """Options recognized by the revalidation engine (durations in seconds)."""
    fetcher: Optional[Callable[..., Any]] = None
    loading_timeout: float = 3.0
    focus_throttle_interval: float = 5.0
    revalidate_on_focus: bool = True
    on_loading_slow: Callable[[str, "FetchConfig"], Any] = _noop
    on_success: Callable[[Any, str, "FetchConfig"], Any] = _noop
    on_error: Callable[[BaseException, str, "FetchConfig"], Any] = _noop
    initial_data: Any = None

    def merged(self, overrides: Optional[Mapping[str, Any]]) -> "FetchConfig":
        """
        Return a copy with ``overrides`` applied.

        Raises:
            TypeError: If an override names an unknown option
        """
        if not overrides:
            return self
        return replace(self, **dict(overrides))

    @classmethod
    def option_names(cls) -> tuple:
        return tuple(f.name for f in fields(cls))


def default_config(
    app_settings: Optional[Settings] = None,
    environment: Optional[Environment] = None,
) -> FetchConfig:
    """
    Built-in defaults, adjusted for the environment.

    On a slow connection the loading timeout is stretched so
    ``on_loading_slow`` does not fire for every request.
    """
    app_settings = app_settings or default_settings
    loading_timeout = app_settings.loading_timeout_seconds
    if environment is not None and environment.is_slow_connection:
        loading_timeout = app_settings.slow_connection_loading_timeout_seconds

    return FetchConfig(
        loading_timeout=loading_timeout,
        focus_throttle_interval=app_settings.focus_throttle_interval_seconds,
        revalidate_on_focus=app_settings.revalidate_on_focus,
    )


_context_overrides: ContextVar[Dict[str, Any]] = ContextVar("fetch_config_context", default={})


@contextmanager
def config_context(**overrides: Any) -> Iterator[Dict[str, Any]]:
    """
    Scope option overrides to the current context.

    Nested contexts stack; the innermost value wins.

    Usage:
        with config_context(fetcher=json_fetcher, loading_timeout=1.0):
            engine = manager.activate("/api/user")
    """
    unknown = set(overrides) - set(FetchConfig.option_names())
    if unknown:
        raise TypeError(f"Unknown fetch options: {', '.join(sorted(unknown))}")

    merged = {**_context_overrides.get(), **overrides}
    token = _context_overrides.set(merged)
    try:
        yield merged
    finally:
        _context_overrides.reset(token)


def current_context() -> Dict[str, Any]:
    """Overrides from the active ``config_context`` (empty outside one)."""
    return dict(_context_overrides.get())


def resolve_config(
    base: FetchConfig,
    options: Optional[Mapping[str, Any]] = None,
) -> FetchConfig:
    """Apply context overrides then per-call options on top of ``base``."""
    return base.merged(current_context()).merged(options)
