"""
Default fetch function: GET a URL and decode the JSON body.

Usable as ``fetcher=`` for any key that is a URL (or a path below
``SWR_FETCH_BASE_URL``). Failures raise ``FetchError`` so they are cached
under the key's error namespace like any other fetch failure.
"""
import logging
import threading
from typing import Any, Dict, Optional

import requests

from config.settings import settings
from swrcache.cache.core import ARGS_KEY_PREFIX

logger = logging.getLogger("fetchers")

# Limit concurrent upstream requests across all worker threads
_http_semaphore = threading.Semaphore(10)

_session: Optional[requests.Session] = None
_session_lock = threading.Lock()


class FetchError(Exception):
    """Upstream request failed (transport error, HTTP error, or bad JSON)."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status_code = status_code


def _get_session() -> requests.Session:
    global _session
    with _session_lock:
        if _session is None:
            _session = requests.Session()
            _session.headers.update({"Accept": "application/json"})
        return _session


def resolve_url(key: str, base_url: Optional[str] = None) -> str:
    """Absolute URL for a key; relative keys are joined to the base URL."""
    base_url = base_url if base_url is not None else settings.fetch_base_url
    if key.startswith(("http://", "https://")) or not base_url:
        return key
    return f"{base_url.rstrip('/')}/{key.lstrip('/')}"


def json_fetcher(key: str, *args: Any) -> Any:
    """
    Fetch a URL as JSON.

    Called as ``json_fetcher(url)`` or ``json_fetcher(url, params)`` for
    literal keys. For argument-list keys such as ``[url, params]`` the key is
    a content hash, so the URL and params come from the arguments instead.

    Args:
        key: URL or path below the configured base URL, or a hashed key
        *args: ``(params,)`` for literal keys, ``(url, params)`` for argument lists

    Returns:
        Decoded JSON body

    Raises:
        FetchError: On connection errors, non-2xx responses or invalid JSON
    """
    if key.startswith(ARGS_KEY_PREFIX) and args:
        target, args = args[0], args[1:]
    else:
        target = key
    params: Optional[Dict[str, Any]] = args[0] if args else None

    url = resolve_url(str(target))
    with _http_semaphore:
        try:
            response = _get_session().get(
                url,
                params=params,
                timeout=settings.fetch_timeout_seconds,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.warning(f"HTTP {status} from {url}")
            raise FetchError(url, f"HTTP {status}", status_code=status) from e
        except requests.RequestException as e:
            logger.warning(f"Request to {url} failed: {e}")
            raise FetchError(url, str(e)) from e

    try:
        return response.json()
    except ValueError as e:
        raise FetchError(url, "invalid JSON body", status_code=response.status_code) from e
