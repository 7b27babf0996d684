"""
Pydantic schemas for the cache operations API.
"""
from typing import Any, Optional

from pydantic import BaseModel


class CacheEntryResponse(BaseModel):
    """Cached data and error for one key."""
    key: str
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    is_validating: bool = False


class MutateRequest(BaseModel):
    """Replace the cached data for a key."""
    data: Any = None
    revalidate: bool = True


class EnvironmentUpdate(BaseModel):
    """Host visibility/connectivity change; omitted fields stay as they are."""
    visible: Optional[bool] = None
    online: Optional[bool] = None


class EnvironmentState(BaseModel):
    visible: bool
    online: bool
    focus_revalidators: int = 0
