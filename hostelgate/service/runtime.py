from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from hostelgate.config import Settings, get_settings, reset_settings_cache
from hostelgate.logging import get_logger
from hostelgate.service.auth import AuthService
from hostelgate.service.cache import CacheService
from hostelgate.service.gate import RequestGate
from hostelgate.service.ratelimit import LoginThrottle
from hostelgate.service.sessions import SessionService
from hostelgate.storage.directory import MemoryDirectory, PrincipalDirectory
from hostelgate.storage.errors import StoreUnavailable
from hostelgate.storage.kv import KeyValueStore, RedisStore
from hostelgate.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[KeyValueStore] = None,
        directory: Optional[PrincipalDirectory] = None,
    ):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
            environment=self.settings.environment.value,
        )
        if store is None:
            store = (
                MemoryStore()
                if self.settings.use_memory_store
                else RedisStore.from_settings(self.settings)
            )
        self.directory: PrincipalDirectory = directory or MemoryDirectory()
        self.store_error: Optional[str] = None
        self._build_services(store)

    def _build_services(self, store: KeyValueStore) -> None:
        self.store = store
        self.sessions = SessionService(store, self.settings)
        self.cache = CacheService(store, default_ttl=self.settings.cache_default_ttl)
        self.gate = RequestGate(self.sessions, self.cache, self.directory)
        self.auth = AuthService(self.directory, self.sessions, self.cache, self.gate)
        self.login_throttle = LoginThrottle(store, self.settings)

    async def startup(self) -> None:
        """Connect the store; fall back to memory only where explicitly allowed.

        Without a fallback the app keeps running: every gated request then
        fails closed with 401 and caching degrades to misses. Store commands
        retry the connection on their own, so service resumes once the store
        comes back.
        """
        try:
            await self.store.connect()
            self.store_error = None
        except StoreUnavailable as exc:
            self.store_error = str(exc)
            if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
                logger.error(
                    "runtime_store_unavailable",
                    store=self.store_describe(),
                    error=str(exc),
                )
                return
            fallback_mode = (
                "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            )
            logger.warning(
                "redis_disabled_fallback",
                store=self.store_describe(),
                error=str(exc),
                message=(
                    f"Running without Redis under {fallback_mode}; sessions and caches "
                    "are in-memory only and are lost on restart."
                ),
                mode=fallback_mode,
            )
            self._build_services(MemoryStore())
            self.store_error = None
        logger.info("runtime_started", store=self.store_describe())

    async def shutdown(self) -> None:
        await self.store.close()
        logger.info("runtime_stopped")

    def store_describe(self) -> Dict[str, Any]:
        describe = getattr(self.store, "describe", None)
        return describe() if callable(describe) else {"backend": type(self.store).__name__}

    async def health(self) -> Dict[str, Any]:
        try:
            reachable = await self.store.ping()
        except StoreUnavailable as exc:
            self.store_error = str(exc)
            return {**self.store_describe(), "reachable": False, "error": str(exc)}
        if self.store_error is not None:
            logger.info("runtime_store_recovered", store=self.store_describe())
            self.store_error = None
        return {**self.store_describe(), "reachable": reachable}


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the fast path skips the lock once created.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def set_runtime(instance: Runtime) -> Runtime:
    """Install a pre-built runtime, e.g. one with a production directory."""
    global runtime
    with _runtime_lock:
        runtime = instance
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
