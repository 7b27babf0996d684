"""
Operations API over the process-wide cache manager.

Lets an operator inspect and mutate the shared cache and lets the host
forward focus/visibility changes to the revalidation engines.
"""
import logging

from fastapi import FastAPI, HTTPException

from swrcache.cache import get_cache_manager
from swrcache.schemas import (
    CacheEntryResponse,
    EnvironmentState,
    EnvironmentUpdate,
    MutateRequest,
)
from config.settings import settings

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger("main")

APP_VERSION = "v0.1.0"
APP_NAME = "SWR Cache"

app = FastAPI(
    title=APP_NAME,
    description="Stale-while-revalidate cache operations",
    version=APP_VERSION,
)


def _entry(key: str) -> CacheEntryResponse:
    state = get_cache_manager().get(key)
    return CacheEntryResponse(
        key=key,
        data=state.data,
        error=str(state.error) if state.error is not None else None,
        error_type=type(state.error).__name__ if state.error is not None else None,
        is_validating=state.is_validating,
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {"name": APP_NAME, "version": APP_VERSION}


@app.get("/cache/stats")
def cache_stats():
    """Get cache statistics."""
    return get_cache_manager().get_stats()


@app.post("/cache/clear")
def cache_clear():
    """Drop every cached value and error."""
    return {"cleared": get_cache_manager().clear()}


@app.get("/cache/{key:path}", response_model=CacheEntryResponse)
def cache_get(key: str):
    """Cached data and error for a key."""
    entry = _entry(key)
    if entry.data is None and entry.error is None:
        raise HTTPException(status_code=404, detail=f"Nothing cached for '{key}'")
    return entry


@app.put("/cache/{key:path}", response_model=CacheEntryResponse)
def cache_mutate(key: str, request: MutateRequest):
    """Replace cached data; observers of the key pick it up immediately."""
    get_cache_manager().mutate(key, request.data, should_revalidate=request.revalidate)
    return _entry(key)


@app.post("/events/focus")
def focus_event():
    """Forward a focus-regained event to every focus revalidator."""
    manager = get_cache_manager()
    revalidators = len(manager.subscribers.focus_revalidators())
    manager.environment.emit_focus()
    return {"revalidators": revalidators}


@app.post("/events/environment", response_model=EnvironmentState)
def environment_event(update: EnvironmentUpdate):
    """
    Update visibility/connectivity.

    Becoming visible or coming back online counts as regaining focus.
    """
    environment = get_cache_manager().environment
    regained = (update.visible is True and not environment.is_visible()) or (
        update.online is True and not environment.is_online()
    )
    if update.visible is not None:
        environment.set_visible(update.visible)
    if update.online is not None:
        environment.set_online(update.online)

    notified = 0
    if regained and environment.is_visible() and environment.is_online():
        logger.info("Environment regained focus, revalidating")
        notified = get_cache_manager().revalidate_on_focus()

    return EnvironmentState(
        visible=environment.is_visible(),
        online=environment.is_online(),
        focus_revalidators=notified,
    )
