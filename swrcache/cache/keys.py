"""
Key normalization.

Turns a key specification (literal, argument list, or key-producing
function) into the canonical cache key plus the arguments to hand to the
fetcher. Runs on every activation, so it stays pure and cheap.
"""
import hashlib
import json
from typing import Any

from .core import (
    ARGS_KEY_PREFIX,
    ArgListKey,
    FunctionKey,
    NormalizedKey,
    ScalarKey,
    as_key_spec,
)


def _canonical(value: Any) -> Any:
    """
    JSON-safe form of an argument with dict items in a fixed order.

    Dict keys may be of mixed types, so items are ordered by ``repr`` of the
    key and kept as [key, value] pairs (1 and "1" stay distinct).
    """
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda item: repr(item[0]))
        return {"dict": [[_canonical(k), _canonical(v)] for k, v in items]}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return repr(value)


def _hash_args(args: tuple) -> str:
    """Deterministic content hash of an argument list."""
    encoded = json.dumps(_canonical(args), separators=(",", ":"))
    return ARGS_KEY_PREFIX + hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]


def _normalize_value(value: Any) -> NormalizedKey:
    if isinstance(value, (list, tuple)):
        args = tuple(value)
        return _hash_args(args), args
    if value is None:
        return "", None
    return str(value), None


def normalize_key(raw: Any) -> NormalizedKey:
    """
    Resolve a key specification.

    Args:
        raw: A KeySpec or any raw value accepted by ``as_key_spec``

    Returns:
        (cache_key, args) where ``args`` is None unless the key was an
        argument list. An empty cache_key means the request is disabled.
    """
    spec = as_key_spec(raw)

    if isinstance(spec, FunctionKey):
        try:
            produced = spec.fn()
        except Exception:
            # Dependencies not ready yet: disable the request for now
            return "", None
        if callable(produced):
            return "", None
        return _normalize_value(produced)

    if isinstance(spec, ArgListKey):
        return _hash_args(spec.args), spec.args

    if isinstance(spec, ScalarKey):
        if spec.value is None:
            return "", None
        return str(spec.value), None

    raise TypeError(f"Unsupported key spec: {spec!r}")
