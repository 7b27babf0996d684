"""
Shared fixtures: an isolated cache manager per test and a controllable fetcher.
"""
import threading
import time

import pytest

from config.settings import Settings
from swrcache.cache import CacheManager, Environment


class FakeFetcher:
    """
    Fetch function that records its calls.

    When gated, every call blocks until ``release()`` so tests can pile up
    observers while a fetch is in flight.
    """

    def __init__(self, result=None, error=None, gated=False):
        self.result = result
        self.error = error
        self.gate = threading.Event()
        if not gated:
            self.gate.set()
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, key, *args):
        with self._lock:
            self.calls.append((key, args))
        self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        if callable(self.result):
            return self.result(key, *args)
        return self.result

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def release(self) -> None:
        self.gate.set()


def _wait_until(predicate, timeout=2.0, interval=0.005) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds (or a timeout passes)."""
    return _wait_until


@pytest.fixture
def test_settings():
    return Settings(_env_file=None)


@pytest.fixture
def environment():
    return Environment()


@pytest.fixture
def manager(environment, test_settings):
    """Fresh manager with its own store, registries and worker pool."""
    manager = CacheManager(environment=environment, app_settings=test_settings)
    yield manager
    manager.shutdown(wait=True)


@pytest.fixture
def make_fetcher(manager):
    """Build FakeFetchers; all are released before the manager shuts down."""
    created = []

    def factory(**kwargs) -> FakeFetcher:
        fetcher = FakeFetcher(**kwargs)
        created.append(fetcher)
        return fetcher

    yield factory
    for fetcher in created:
        fetcher.release()
