"""Unit tests for login throttling.

Tests for:
- Fixed-window counting and the window reset
- Retry hints on rejection
- Subject keys for address and account
- Behaviour with the limit disabled or the store down
"""

import pytest

from hostelgate.config import Settings
from hostelgate.service.errors import RateLimitedError
from hostelgate.service.ratelimit import LoginThrottle, RateLimiter, rate_key
from hostelgate.storage.errors import StoreUnavailable
from hostelgate.storage.memory import MemoryStore


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def throttle(store):
    return LoginThrottle(store, Settings(login_rate_limit=3, login_rate_window_seconds=60))


class DownStore(MemoryStore):
    async def incr(self, key, *, ex=None):
        raise StoreUnavailable("connection refused")


class TestRateLimiter:
    """Tests for the fixed-window counter."""

    async def test_counts_down_then_rejects(self, store):
        limiter = RateLimiter(store, limit=2, window_seconds=60)
        assert await limiter.hit("k") == 1
        assert await limiter.hit("k") == 0
        with pytest.raises(RateLimitedError) as exc:
            await limiter.hit("k")
        assert exc.value.status_code == 429
        assert exc.value.retry_after == 60

    async def test_window_expiry_restores_allowance(self, store, clock):
        limiter = RateLimiter(store, limit=1, window_seconds=60)
        await limiter.hit("k")
        clock.advance(30)
        with pytest.raises(RateLimitedError) as exc:
            await limiter.hit("k")
        assert exc.value.retry_after == 30
        clock.advance(30)
        assert await limiter.hit("k") == 0

    async def test_zero_limit_disables(self, store):
        limiter = RateLimiter(store, limit=0, window_seconds=60)
        for _ in range(50):
            await limiter.hit("k")
        assert await store.get("k") is None

    async def test_store_outage_lets_attempt_through(self, clock):
        limiter = RateLimiter(DownStore(clock=clock), limit=1, window_seconds=60)
        assert await limiter.hit("k") == 1
        assert await limiter.hit("k") == 1


class TestLoginThrottle:
    """Tests for login subjects."""

    async def test_fourth_attempt_is_rejected(self, throttle):
        for _ in range(3):
            await throttle.check("10.0.0.1", "student@example.com")
        with pytest.raises(RateLimitedError):
            await throttle.check("10.0.0.1", "student@example.com")

    async def test_email_case_shares_one_counter(self, throttle):
        for email in ("a@example.com", "A@Example.com", " a@example.com "):
            await throttle.check("10.0.0.1", email)
        with pytest.raises(RateLimitedError):
            await throttle.check("10.0.0.1", "a@example.com")

    async def test_other_account_and_address_are_separate(self, throttle):
        for _ in range(3):
            await throttle.check("10.0.0.1", "a@example.com")
        assert await throttle.check("10.0.0.1", "b@example.com") == 2
        assert await throttle.check("10.0.0.2", "a@example.com") == 2

    def test_keys_are_hashed_under_prefix(self):
        key = LoginThrottle.key("10.0.0.1", "a@example.com")
        assert key.startswith("ratelimit:login:")
        assert "example.com" not in key
        assert rate_key("login", "a:b", "c") != rate_key("login", "a", "b:c")
