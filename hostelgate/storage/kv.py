from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from hostelgate.logging import get_logger
from hostelgate.storage.errors import StoreNotInitialized, StoreUnavailable

logger = get_logger(__name__)

_STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class KeyValueStore(Protocol):
    """Primitives the session store and cache service need from a backend.

    Absent keys read as ``None``; backend failures raise ``StoreUnavailable``.
    TTL readers follow Redis conventions: ``-2`` for a missing key and ``-1``
    for a key without expiry. ``set(..., xx=True)`` only overwrites a live key
    and reports whether it wrote; ``incr`` starts a missing counter at 1 and
    applies ``ex`` only to that first increment.
    """

    async def connect(self) -> Any: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def set(
        self,
        key: str,
        value: str,
        *,
        ex: Optional[int] = None,
        px: Optional[int] = None,
        xx: bool = False,
    ) -> bool: ...

    async def incr(self, key: str, *, ex: Optional[int] = None) -> int: ...

    async def delete(self, *keys: str) -> int: ...

    async def keys(self, pattern: str) -> List[str]: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def ttl(self, key: str) -> int: ...

    async def pttl(self, key: str) -> int: ...

    async def zadd(self, key: str, member: str, score: float) -> None: ...

    async def zrange(self, key: str) -> List[str]: ...

    async def zscore(self, key: str, member: str) -> Optional[float]: ...

    async def zrem(self, key: str, *members: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisStore:
    """Lazily connected ``redis.asyncio`` adapter shared by the whole process.

    ``connect()`` may be awaited by any number of concurrent callers; only one
    connection attempt is ever in flight. Commands issued while disconnected
    reconnect on demand. After a failed attempt, commands fail fast with
    ``StoreNotInitialized`` until ``reconnect_interval`` seconds have passed.
    """

    SCAN_BATCH = 500

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        db: int = 0,
        connect_timeout: float = 5.0,
        reconnect_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.db = db
        self.connect_timeout = connect_timeout
        self.reconnect_interval = reconnect_interval
        self.clock = clock
        self._client: Optional[aioredis.Redis] = None
        self._connect_lock = asyncio.Lock()
        self._last_failure: Optional[float] = None

    @classmethod
    def from_settings(cls, settings) -> "RedisStore":
        return cls(
            settings.redis_host,
            settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            db=settings.redis_db,
            connect_timeout=settings.redis_connect_timeout,
            reconnect_interval=settings.redis_reconnect_interval,
        )

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            raise StoreNotInitialized(
                "key-value store not initialized; await connect() on startup"
            )
        return self._client

    async def connect(self) -> aioredis.Redis:
        if self._client is not None:
            return self._client
        async with self._connect_lock:
            # Another caller may have finished connecting while we waited
            if self._client is not None:
                return self._client
            client = aioredis.Redis(
                host=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                db=self.db,
                decode_responses=True,
                socket_timeout=self.connect_timeout,
                socket_connect_timeout=self.connect_timeout,
            )
            try:
                await client.ping()
            except _STORE_ERRORS as exc:
                self._last_failure = self.clock()
                logger.error(
                    "kv_store_connect_failed",
                    host=self.host,
                    port=self.port,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                with contextlib.suppress(*_STORE_ERRORS):
                    await client.aclose()
                raise StoreUnavailable(
                    "unable to connect to key-value store",
                    detail={"host": self.host, "port": self.port},
                ) from exc
            self._client = client
            self._last_failure = None
            logger.info("kv_store_connected", host=self.host, port=self.port, db=self.db)
            return client

    async def _reconnect(self) -> aioredis.Redis:
        if self._last_failure is not None:
            wait = self._last_failure + self.reconnect_interval - self.clock()
            if wait > 0:
                raise StoreNotInitialized(
                    "key-value store not connected",
                    detail={"retry_in_seconds": round(wait, 3)},
                )
        logger.info("kv_store_reconnecting", host=self.host, port=self.port)
        return await self.connect()

    @contextlib.asynccontextmanager
    async def _command(self, op: str, key: Optional[str] = None) -> AsyncIterator[aioredis.Redis]:
        client = self._client
        if client is None:
            client = await self._reconnect()
        try:
            yield client
        except _STORE_ERRORS as exc:
            logger.error(
                "kv_store_command_failed",
                op=op,
                key=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StoreUnavailable(f"key-value store {op} failed", detail={"key": key}) from exc

    async def get(self, key: str) -> Optional[str]:
        async with self._command("get", key) as client:
            return await client.get(key)

    async def set(
        self,
        key: str,
        value: str,
        *,
        ex: Optional[int] = None,
        px: Optional[int] = None,
        xx: bool = False,
    ) -> bool:
        async with self._command("set", key) as client:
            # SET ... XX replies nil when the key is gone
            return bool(await client.set(key, value, ex=ex, px=px, xx=xx))

    async def incr(self, key: str, *, ex: Optional[int] = None) -> int:
        async with self._command("incr", key) as client:
            count = int(await client.incr(key))
            if count == 1 and ex is not None:
                await client.expire(key, ex)
            return count

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        async with self._command("delete", keys[0]) as client:
            return int(await client.delete(*keys))

    async def keys(self, pattern: str) -> List[str]:
        # SCAN rather than KEYS so enumeration never blocks the server
        async with self._command("scan", pattern) as client:
            return [key async for key in client.scan_iter(match=pattern, count=self.SCAN_BATCH)]

    async def delete_pattern(self, pattern: str) -> int:
        matched = await self.keys(pattern)
        if not matched:
            return 0
        return await self.delete(*matched)

    async def ttl(self, key: str) -> int:
        async with self._command("ttl", key) as client:
            return int(await client.ttl(key))

    async def pttl(self, key: str) -> int:
        async with self._command("pttl", key) as client:
            return int(await client.pttl(key))

    async def zadd(self, key: str, member: str, score: float) -> None:
        async with self._command("zadd", key) as client:
            await client.zadd(key, {member: score})

    async def zrange(self, key: str) -> List[str]:
        async with self._command("zrange", key) as client:
            return list(await client.zrange(key, 0, -1))

    async def zscore(self, key: str, member: str) -> Optional[float]:
        async with self._command("zscore", key) as client:
            return await client.zscore(key, member)

    async def zrem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        async with self._command("zrem", key) as client:
            return int(await client.zrem(key, *members))

    async def ping(self) -> bool:
        async with self._command("ping") as client:
            return bool(await client.ping())

    async def close(self) -> None:
        """Close the connection pool. Safe to call when never connected."""
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
            logger.info("kv_store_closed", host=self.host, port=self.port)

    def describe(self) -> Dict[str, Any]:
        return {"backend": "redis", "host": self.host, "port": self.port, "db": self.db}
