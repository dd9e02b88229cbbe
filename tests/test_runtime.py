"""Tests for runtime wiring, store fallback and the maintenance script."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from hostelgate.config import Settings
from hostelgate.service.runtime import (
    Runtime,
    get_runtime,
    reset_runtime_for_tests,
    set_runtime,
)
from hostelgate.storage import kv
from hostelgate.storage.errors import StoreUnavailable
from hostelgate.storage.kv import RedisStore
from hostelgate.storage.memory import MemoryStore
from scripts.clear_caches import clear_caches


class UnreachableStore(MemoryStore):
    async def connect(self):
        raise StoreUnavailable("connection refused")

    async def ping(self):
        raise StoreUnavailable("connection refused")

    def describe(self):
        return {"backend": "redis", "host": "localhost"}


class TestStartup:
    async def test_fallback_to_memory_when_allowed(self):
        runtime = Runtime(Settings(test_mode=True), store=UnreachableStore())
        await runtime.startup()
        assert isinstance(runtime.store, MemoryStore)
        assert not isinstance(runtime.store, UnreachableStore)
        assert runtime.sessions.store is runtime.store
        assert (await runtime.health())["reachable"] is True

    async def test_no_fallback_keeps_store_and_reports_unhealthy(self):
        settings = Settings(test_mode=False, allow_redis_fallback_dev=False)
        runtime = Runtime(settings, store=UnreachableStore())
        await runtime.startup()
        assert isinstance(runtime.store, UnreachableStore)
        assert runtime.store_error == "connection refused"
        health = await runtime.health()
        assert health["reachable"] is False
        assert health["backend"] == "redis"

    async def test_recovers_when_store_comes_back(self, monkeypatch, clock):
        class FlakyRedis:
            refusals = 1

            def __init__(self, **kwargs):
                pass

            async def ping(self):
                if type(self).refusals > 0:
                    type(self).refusals -= 1
                    raise RedisConnectionError("connection refused")
                return True

            async def aclose(self):
                return None

        monkeypatch.setattr(kv.aioredis, "Redis", FlakyRedis)
        settings = Settings(test_mode=False, allow_redis_fallback_dev=False)
        runtime = Runtime(settings, store=RedisStore(reconnect_interval=5, clock=clock))
        await runtime.startup()
        assert runtime.store_error is not None

        # Inside the retry interval the store is still reported down
        assert (await runtime.health())["reachable"] is False

        clock.advance(5)
        health = await runtime.health()
        assert health["reachable"] is True
        assert runtime.store_error is None
        assert isinstance(runtime.store, RedisStore)
        assert (await runtime.health())["reachable"] is True

    def test_singleton_is_shared(self):
        assert get_runtime() is get_runtime()

    def test_set_runtime_installs_instance(self):
        custom = Runtime(Settings(test_mode=True), store=MemoryStore())
        assert set_runtime(custom) is custom
        assert get_runtime() is custom

    def test_reset_requires_test_mode(self, monkeypatch):
        monkeypatch.setenv("TEST_MODE", "false")
        with pytest.raises(RuntimeError):
            reset_runtime_for_tests()
        monkeypatch.setenv("TEST_MODE", "true")
        assert reset_runtime_for_tests() is get_runtime()


class TestClearCaches:
    async def test_clear_single_group(self):
        store = MemoryStore()
        await store.set("rooms:all", "[]", ex=60)
        await store.set("settings:public", "{}", ex=60)
        result = await clear_caches("rooms", store=store)
        assert result == {"groups": ["rooms"], "complete": True, "purged_session_keys": 0}
        assert await store.get("rooms:all") is None
        assert await store.get("settings:public") == "{}"

    async def test_clear_all_with_session_purge(self):
        store = MemoryStore()
        await store.set("sess:abc", "{}", ex=60)
        await store.zadd("sessions:user:1", "abc", 1)
        await store.set("settings:public", "{}", ex=60)
        result = await clear_caches("all", purge_sessions=True, store=store)
        assert result["purged_session_keys"] == 2
        assert await store.get("sess:abc") is None
        assert await store.get("settings:public") is None
