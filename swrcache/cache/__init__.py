"""
Stale-while-revalidate caching: shared store, single-flight fetches and
observers that stay in sync per key.
"""
from .core import (
    ArgListKey,
    EngineStatus,
    FetchState,
    FunctionKey,
    KeySpec,
    ScalarKey,
    SettlementOutcome,
    as_key_spec,
    error_key,
)
from .keys import normalize_key
from .store import CacheStore
from .coalescer import InFlightRequest, RequestCoalescer
from .subscribers import SubscriberRegistry
from .environment import Environment, throttle
from .options import FetchConfig, config_context, default_config
from .engine import RevalidationEngine
from .manager import CacheManager, get_cache_manager, reset_cache_manager

__all__ = [
    # Core types
    "ArgListKey",
    "EngineStatus",
    "FetchState",
    "FunctionKey",
    "KeySpec",
    "ScalarKey",
    "SettlementOutcome",
    "as_key_spec",
    "error_key",
    # Keys
    "normalize_key",
    # Shared registries
    "CacheStore",
    "InFlightRequest",
    "RequestCoalescer",
    "SubscriberRegistry",
    # Environment
    "Environment",
    "throttle",
    # Options
    "FetchConfig",
    "config_context",
    "default_config",
    # Engine / manager
    "RevalidationEngine",
    "CacheManager",
    "get_cache_manager",
    "reset_cache_manager",
]
