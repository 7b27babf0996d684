"""
Unit tests for the subscriber registry, environment events and throttling.
"""
import pytest

from swrcache.cache import Environment, SubscriberRegistry, throttle


@pytest.fixture
def registry():
    return SubscriberRegistry()


class TestSubscriberRegistry:
    """Tests for per-key listener lists."""

    def test_broadcast_reaches_key_listeners_only(self, registry):
        received = []
        registry.add_cache_listener("a", lambda *args: received.append(("a",) + args))
        registry.add_cache_listener("b", lambda *args: received.append(("b",) + args))

        assert registry.broadcast("a", False, {"v": 1}, None) == 1
        assert received == [("a", False, {"v": 1}, None, False)]

    def test_remove_by_identity(self, registry):
        calls = []

        def make_listener():
            return lambda *args: calls.append(1)

        first, second = make_listener(), make_listener()
        registry.add_cache_listener("a", first)
        registry.add_cache_listener("a", second)

        assert registry.remove_cache_listener("a", first) is True
        assert registry.remove_cache_listener("a", first) is False
        assert registry.cache_listeners("a") == [second]

    def test_lists_may_be_left_empty(self, registry):
        listener = lambda *args: None
        registry.add_cache_listener("a", listener)
        registry.remove_cache_listener("a", listener)

        assert registry.cache_listeners("a") == []
        assert registry.broadcast("a", False, None, None) == 0
        assert registry.get_stats()["subscribed_keys"] == []

    def test_unsubscribe_during_broadcast(self, registry):
        calls = []

        def first(*args):
            calls.append("first")
            registry.remove_cache_listener("a", second)

        def second(*args):
            calls.append("second")

        registry.add_cache_listener("a", first)
        registry.add_cache_listener("a", second)

        # Snapshot taken before iterating: both run this time
        assert registry.broadcast("a", False, None, None) == 2
        assert calls == ["first", "second"]
        assert registry.cache_listeners("a") == [first]

    def test_failing_listener_does_not_stop_broadcast(self, registry):
        calls = []

        def broken(*args):
            raise RuntimeError("listener bug")

        registry.add_cache_listener("a", broken)
        registry.add_cache_listener("a", lambda *args: calls.append(args))

        assert registry.broadcast("a", True, "data", None, settled=True) == 2
        assert calls == [(True, "data", None, True)]

    def test_focus_revalidators_across_keys(self, registry):
        a, b = (lambda: "a"), (lambda: "b")
        registry.add_focus_revalidator("a", a)
        registry.add_focus_revalidator("b", b)

        assert set(registry.focus_revalidators()) == {a, b}
        assert registry.focus_revalidators("a") == [a]

        registry.remove_focus_revalidator("a", a)
        assert registry.focus_revalidators() == [b]

    def test_stats(self, registry):
        registry.add_focus_revalidator("a", lambda: None)
        registry.add_cache_listener("a", lambda *args: None)
        registry.add_cache_listener("b", lambda *args: None)

        stats = registry.get_stats()
        assert stats["focus_revalidators"] == 1
        assert stats["cache_listeners"] == 2
        assert stats["subscribed_keys"] == ["a", "b"]


class TestEnvironment:
    """Tests for visibility/connectivity predicates and focus events."""

    def test_defaults_visible_and_online(self):
        environment = Environment()
        assert environment.is_visible()
        assert environment.is_online()
        assert not environment.is_slow_connection

    def test_flags(self):
        environment = Environment()
        environment.set_visible(False)
        environment.set_online(False)
        assert not environment.is_visible()
        assert not environment.is_online()

    def test_custom_predicates(self):
        environment = Environment(is_visible=lambda: False, is_online=lambda: True)
        assert not environment.is_visible()
        assert environment.is_online()

    def test_slow_connection(self):
        assert Environment(effective_connection_type="2g").is_slow_connection
        assert Environment(effective_connection_type="slow-2g").is_slow_connection
        assert not Environment(effective_connection_type="4g").is_slow_connection

    def test_emit_focus_notifies_listeners_once_each(self):
        environment = Environment()
        calls = []
        listener = lambda: calls.append(1)
        environment.add_focus_listener(listener)
        environment.add_focus_listener(listener)

        assert environment.emit_focus() == 1
        assert calls == [1]

        environment.remove_focus_listener(listener)
        assert environment.emit_focus() == 0


class TestThrottle:
    """Tests for the leading-edge throttle."""

    def test_drops_calls_inside_window(self):
        now = [100.0]
        calls = []
        throttled = throttle(lambda: calls.append(now[0]), 5.0, clock=lambda: now[0])

        throttled()
        now[0] = 102.0
        throttled()
        assert calls == [100.0]

        now[0] = 105.0
        throttled()
        assert calls == [100.0, 105.0]

    def test_independent_wrappers_throttle_independently(self):
        now = [0.0]
        calls = []
        fn = lambda: calls.append(1)
        first = throttle(fn, 5.0, clock=lambda: now[0])
        second = throttle(fn, 5.0, clock=lambda: now[0])

        first()
        second()
        first()
        assert len(calls) == 2
