"""Unit tests for the in-memory key-value store.

Tests for:
- Expiry with second and millisecond TTLs
- Redis-compatible TTL sentinels
- Glob pattern enumeration and deletion
- Sorted-set index primitives
- Conditional writes and counters
"""

import pytest

from hostelgate.storage.memory import MemoryStore


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


class TestExpiry:
    """Tests for lazy expiry."""

    async def test_value_expires_after_ttl(self, store, clock):
        """Test that a key disappears once its TTL has elapsed."""
        await store.set("k", "v", ex=10)
        clock.advance(9.9)
        assert await store.get("k") == "v"
        clock.advance(0.2)
        assert await store.get("k") is None

    async def test_millisecond_ttl(self, store, clock):
        """Test px expiry keeps sub-second precision."""
        await store.set("k", "v", px=1500)
        assert await store.pttl("k") == 1500
        clock.advance(1.0)
        assert await store.pttl("k") == 500
        assert await store.ttl("k") == 0
        clock.advance(0.5)
        assert await store.get("k") is None

    async def test_ttl_sentinels(self, store):
        """Test -2 for missing keys and -1 for keys without expiry."""
        assert await store.ttl("missing") == -2
        await store.set("forever", "v")
        assert await store.ttl("forever") == -1

    async def test_overwrite_resets_expiry(self, store, clock):
        """Test that a second set replaces the previous deadline."""
        await store.set("k", "v1", ex=5)
        clock.advance(4)
        await store.set("k", "v2", ex=5)
        clock.advance(4)
        assert await store.get("k") == "v2"


class TestPatterns:
    """Tests for glob enumeration."""

    async def test_keys_matches_glob(self, store):
        """Test that keys() honours glob patterns."""
        await store.set("rooms:all", "1")
        await store.set("rooms:available:single", "2")
        await store.set("room:7", "3")
        assert sorted(await store.keys("rooms:*")) == ["rooms:all", "rooms:available:single"]

    async def test_delete_pattern_skips_expired(self, store, clock):
        """Test that expired keys are neither listed nor counted."""
        await store.set("user:student:1", "a", ex=1)
        await store.set("user:student:2", "b", ex=100)
        clock.advance(2)
        assert await store.delete_pattern("user:*") == 1
        assert await store.keys("user:*") == []

    async def test_delete_pattern_includes_sorted_sets(self, store):
        """Test that index keys are matched like any other key."""
        await store.zadd("sessions:user:1", "s1", 1)
        assert await store.delete_pattern("sessions:user:*") == 1
        assert await store.zrange("sessions:user:1") == []


class TestSortedSets:
    """Tests for the sorted-set primitives."""

    async def test_zrange_orders_by_score(self, store):
        await store.zadd("z", "b", 2)
        await store.zadd("z", "a", 1)
        await store.zadd("z", "c", 3)
        assert await store.zrange("z") == ["a", "b", "c"]

    async def test_zadd_updates_score(self, store):
        await store.zadd("z", "a", 1)
        await store.zadd("z", "b", 2)
        await store.zadd("z", "a", 5)
        assert await store.zrange("z") == ["b", "a"]
        assert await store.zscore("z", "a") == 5.0

    async def test_zrem_drops_empty_set(self, store):
        """Test that removing the last member removes the key."""
        await store.zadd("z", "a", 1)
        assert await store.zrem("z", "a", "missing") == 1
        assert await store.keys("z") == []
        assert await store.zscore("z", "a") is None


class TestConditionalWrites:
    """Tests for set(xx=True) and incr."""

    async def test_xx_skips_missing_key(self, store):
        assert await store.set("k", "v", xx=True) is False
        assert await store.get("k") is None

    async def test_xx_skips_expired_key(self, store, clock):
        await store.set("k", "v1", ex=5)
        clock.advance(5)
        assert await store.set("k", "v2", px=5000, xx=True) is False
        assert await store.get("k") is None

    async def test_xx_overwrites_live_key(self, store, clock):
        await store.set("k", "v1", ex=5)
        assert await store.set("k", "v2", px=9000, xx=True) is True
        assert await store.get("k") == "v2"
        assert await store.pttl("k") == 9000

    async def test_incr_keeps_first_deadline(self, store, clock):
        assert await store.incr("n", ex=10) == 1
        clock.advance(6)
        assert await store.incr("n", ex=10) == 2
        clock.advance(4)
        assert await store.get("n") is None
        assert await store.incr("n", ex=10) == 1
