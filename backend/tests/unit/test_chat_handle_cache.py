"""
Unit tests for the conversation handle cache.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from chat_handle_cache import ChatHandleCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestChatHandleCache:
    """Tests for ChatHandleCache."""

    def test_set_and_get(self):
        """Test storing and reading a handle."""
        cache = ChatHandleCache()
        cache.set("s1", "handle-1")

        assert cache.get("s1") == "handle-1"
        assert "s1" in cache
        assert len(cache) == 1

    def test_missing_entry_is_none(self):
        """Test that an absent session is not an error."""
        assert ChatHandleCache().get("missing") is None

    def test_get_or_create_builds_once(self):
        """Test that the factory runs only for absent entries."""
        cache = ChatHandleCache()
        calls = []

        def factory():
            calls.append(1)
            return f"handle-{len(calls)}"

        assert cache.get_or_create("s1", factory) == "handle-1"
        assert cache.get_or_create("s1", factory) == "handle-1"
        assert len(calls) == 1

    def test_last_write_wins(self):
        """Test that a later set replaces the handle."""
        cache = ChatHandleCache()
        cache.set("s1", "old")
        cache.set("s1", "new")

        assert cache.get("s1") == "new"

    def test_invalidate(self):
        """Test explicit removal."""
        cache = ChatHandleCache()
        cache.set("s1", "handle")

        assert cache.invalidate("s1") is True
        assert cache.invalidate("s1") is False
        assert cache.get("s1") is None

    def test_ttl_expiry(self):
        """Test that entries expire after the TTL."""
        clock = FakeClock()
        cache = ChatHandleCache(ttl_seconds=60, clock=clock)
        cache.set("s1", "handle")

        clock.now += 59
        assert cache.get("s1") == "handle"

        clock.now += 1
        assert cache.get("s1") is None
        assert len(cache) == 0

    def test_expired_entry_recreated(self):
        """Test that get_or_create rebuilds an expired handle."""
        clock = FakeClock()
        cache = ChatHandleCache(ttl_seconds=10, clock=clock)
        cache.set("s1", "stale")

        clock.now += 11

        assert cache.get_or_create("s1", lambda: "fresh") == "fresh"

    def test_zero_ttl_never_expires(self):
        """Test that a zero TTL disables expiry."""
        clock = FakeClock()
        cache = ChatHandleCache(ttl_seconds=0, clock=clock)
        cache.set("s1", "handle")

        clock.now += 10 ** 6

        assert cache.get("s1") == "handle"

    def test_clear(self):
        cache = ChatHandleCache()
        cache.set("s1", "a")
        cache.set("s2", "b")
        cache.clear()

        assert len(cache) == 0
