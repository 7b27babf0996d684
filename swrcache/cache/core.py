"""
Core cache data structures.
"""
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple, Union
from enum import Enum


# Errors share the store with data but live under their own namespace
ERROR_KEY_PREFIX = "err@"

# Argument-list keys hash to "args@<digest>"
ARGS_KEY_PREFIX = "args@"


def error_key(key: str) -> str:
    """Companion store key holding the last error for ``key``."""
    return f"{ERROR_KEY_PREFIX}{key}"


class EngineStatus(Enum):
    """Revalidation engine states."""
    IDLE = "idle"
    VALIDATING = "validating"


class SettlementOutcome(Enum):
    """How the most recent revalidation settled."""
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class FunctionKey:
    """Key produced lazily by a zero-argument function that may raise."""
    fn: Callable[[], Any]


@dataclass(frozen=True)
class ArgListKey:
    """Ordered argument list; hashed into the cache key and passed to the fetcher."""
    args: Tuple[Any, ...]


@dataclass(frozen=True)
class ScalarKey:
    """Literal key value (coerced to ``str``)."""
    value: Any


KeySpec = Union[FunctionKey, ArgListKey, ScalarKey]


def as_key_spec(raw: Any) -> KeySpec:
    """
    Classify a raw key into its tagged form.

    Already-tagged specs pass through unchanged.
    """
    if isinstance(raw, (FunctionKey, ArgListKey, ScalarKey)):
        return raw
    if callable(raw):
        return FunctionKey(raw)
    if isinstance(raw, (list, tuple)):
        return ArgListKey(tuple(raw))
    return ScalarKey(raw)


@dataclass(frozen=True)
class FetchState:
    """
    What an observer sees for its key.

    Replaced as a whole on every change so readers never observe a mix of
    old and new fields.
    """
    data: Any = None
    error: Optional[BaseException] = None
    is_validating: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "data": self.data,
            "error": str(self.error) if self.error is not None else None,
            "isValidating": self.is_validating,
        }


# Normalized key plus the argument list forwarded to the fetcher
NormalizedKey = Tuple[str, Optional[Sequence[Any]]]
