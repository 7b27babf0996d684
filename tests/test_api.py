"""
Tests for the cache operations API.
"""
import pytest
from fastapi.testclient import TestClient

from swrcache.cache import get_cache_manager, reset_cache_manager
from swrcache.main import app

client = TestClient(app)


@pytest.fixture(autouse=True)
def fresh_manager():
    """Each test talks to a brand-new global manager."""
    reset_cache_manager()
    yield get_cache_manager()
    reset_cache_manager()


def test_health_endpoint_returns_ok():
    """Test that /health returns status: ok"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_version_endpoint():
    """Test that /version names the app"""
    data = client.get("/version").json()
    assert data["name"] == "SWR Cache"


def test_unknown_key_returns_404():
    """Test that reading an empty key is a 404"""
    response = client.get("/cache/api/missing")
    assert response.status_code == 404


def test_mutate_then_read(fresh_manager):
    """Test that PUT stores data that GET and observers see"""
    response = client.put("/cache/api/user", json={"data": {"login": "octocat"}, "revalidate": False})
    assert response.status_code == 200
    assert response.json()["data"] == {"login": "octocat"}

    data = client.get("/cache/api/user").json()
    assert data["key"] == "api/user"
    assert data["data"] == {"login": "octocat"}
    assert data["error"] is None
    assert fresh_manager.store.get("api/user") == {"login": "octocat"}


def test_cached_error_is_reported(fresh_manager):
    """Test that cached errors come back as strings with their type"""
    fresh_manager.store.set_error("api/user", RuntimeError("upstream down"))
    data = client.get("/cache/api/user").json()
    assert data["error"] == "upstream down"
    assert data["error_type"] == "RuntimeError"


def test_stats_and_clear():
    """Test that /cache/stats counts entries and /cache/clear drops them"""
    client.put("/cache/a", json={"data": 1, "revalidate": False})
    client.put("/cache/b", json={"data": 2, "revalidate": False})

    stats = client.get("/cache/stats").json()
    assert stats["entries"] == 2
    assert stats["mutations"] == 2

    assert client.post("/cache/clear").json() == {"cleared": 2}
    assert client.get("/cache/stats").json()["entries"] == 0


def test_focus_event_reaches_revalidators(fresh_manager):
    """Test that /events/focus fans out to registered revalidators"""
    fresh_manager.activate("a", fetcher=lambda key: "v")
    response = client.post("/events/focus")
    assert response.status_code == 200
    assert response.json() == {"revalidators": 1}
    assert fresh_manager.get_stats()["focus_events"] == 1


def test_environment_regaining_visibility_revalidates(fresh_manager):
    """Test that becoming visible again counts as a focus event"""
    fresh_manager.activate("a", fetcher=lambda key: "v")

    hidden = client.post("/events/environment", json={"visible": False}).json()
    assert hidden == {"visible": False, "online": True, "focus_revalidators": 0}

    shown = client.post("/events/environment", json={"visible": True}).json()
    assert shown == {"visible": True, "online": True, "focus_revalidators": 1}
