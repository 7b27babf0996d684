"""
Tests for the default JSON fetcher (HTTP calls mocked).
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from swrcache import fetchers
from swrcache.fetchers import FetchError, json_fetcher, resolve_url


def _response(status=200, payload=None, bad_json=False):
    response = MagicMock()
    response.status_code = status
    if status >= 400:
        error = requests.HTTPError(f"{status} Error")
        error.response = response
        response.raise_for_status.side_effect = error
    if bad_json:
        response.json.side_effect = ValueError("no JSON")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    session = MagicMock()
    with patch.object(fetchers, "_get_session", return_value=session):
        yield session


class TestResolveUrl:
    def test_absolute_url_untouched(self):
        assert resolve_url("https://api.github.com/users/octocat", "http://other") == (
            "https://api.github.com/users/octocat"
        )

    def test_relative_key_joined_to_base(self):
        assert resolve_url("/users/octocat", "https://api.github.com/") == (
            "https://api.github.com/users/octocat"
        )

    def test_no_base_url(self):
        assert resolve_url("/users/octocat", "") == "/users/octocat"


class TestJsonFetcher:
    def test_returns_decoded_body(self, session):
        session.get.return_value = _response(payload={"login": "octocat"})

        assert json_fetcher("https://api.github.com/users/octocat") == {"login": "octocat"}
        _, kwargs = session.get.call_args
        assert kwargs["params"] is None

    def test_params_forwarded(self, session):
        session.get.return_value = _response(payload=[])
        json_fetcher("https://api.github.com/search/repositories", {"q": "swr"})
        _, kwargs = session.get.call_args
        assert kwargs["params"] == {"q": "swr"}

    def test_http_error_raises_fetch_error(self, session):
        session.get.return_value = _response(status=404)

        with pytest.raises(FetchError) as exc_info:
            json_fetcher("https://api.github.com/users/nobody")
        assert exc_info.value.status_code == 404

    def test_connection_error_raises_fetch_error(self, session):
        session.get.side_effect = requests.ConnectionError("unreachable")

        with pytest.raises(FetchError) as exc_info:
            json_fetcher("https://api.github.com/users/octocat")
        assert exc_info.value.status_code is None

    def test_invalid_json_raises_fetch_error(self, session):
        session.get.return_value = _response(bad_json=True)

        with pytest.raises(FetchError, match="invalid JSON"):
            json_fetcher("https://api.github.com/users/octocat")

    def test_arg_list_key_uses_url_and_params_from_args(self, session, manager, wait_until):
        session.get.return_value = _response(payload=[{"name": "swr"}])
        engine = manager.activate(["https://api.github.com/repos", {"page": 1}], fetcher=json_fetcher)

        assert wait_until(lambda: engine.data == [{"name": "swr"}])
        args, kwargs = session.get.call_args
        assert args[0] == "https://api.github.com/repos"
        assert kwargs["params"] == {"page": 1}

    def test_arg_list_key_with_url_only(self, session):
        session.get.return_value = _response(payload={"ok": True})
        json_fetcher("args@0123456789abcdef", "https://api.github.com/users/octocat")
        args, kwargs = session.get.call_args
        assert args[0] == "https://api.github.com/users/octocat"
        assert kwargs["params"] is None

    def test_failure_is_cached_as_error(self, session, manager, wait_until):
        session.get.return_value = _response(status=500)
        engine = manager.activate("https://api.github.com/users/octocat", fetcher=json_fetcher)

        assert wait_until(lambda: isinstance(engine.error, FetchError))
        assert engine.error.status_code == 500
        assert manager.store.get_error(engine.key) is engine.error
