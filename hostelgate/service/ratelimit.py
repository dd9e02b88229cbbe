from __future__ import annotations

import hashlib
from typing import Optional

from hostelgate.logging import get_logger
from hostelgate.service.errors import RateLimitedError
from hostelgate.storage.errors import StoreUnavailable
from hostelgate.storage.kv import KeyValueStore

logger = get_logger(__name__)


def rate_key(scope: str, *parts: Optional[str]) -> str:
    """Store key for one limited subject.

    The subject is hashed so client-supplied values (emails, tab ids) cannot
    collide through the delimiter or reach outside the ``ratelimit:`` prefix.
    """
    subject = "\x1f".join(part or "" for part in parts)
    digest = hashlib.sha256(subject.encode()).hexdigest()
    return f"ratelimit:{scope}:{digest}"


class RateLimiter:
    """Fixed-window attempt counter kept in the shared key-value store.

    The first hit in a window creates a counter that expires with the
    window; later hits increment it. A limit of 0 disables the check. When
    the store is down the check is skipped, since the guarded operation
    needs the store anyway and fails on its own.
    """

    def __init__(self, store: KeyValueStore, *, limit: int, window_seconds: int) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    async def hit(self, key: str) -> int:
        """Count one attempt and return the attempts left in this window.

        Raises ``RateLimitedError`` once the attempt exceeds the limit.
        """
        if self.limit <= 0:
            return self.limit
        try:
            count = await self.store.incr(key, ex=self.window_seconds)
            if count <= self.limit:
                return self.limit - count
            retry_after = await self.store.ttl(key)
        except StoreUnavailable as exc:
            logger.warning("rate_limit_store_unavailable", key=key, error=str(exc))
            return self.limit
        retry_after = self.window_seconds if retry_after < 0 else max(1, retry_after)
        logger.warning("rate_limited", key=key, limit=self.limit, retry_after=retry_after)
        raise RateLimitedError(retry_after=retry_after)


class LoginThrottle:
    """Login attempts counted per client address and account."""

    def __init__(self, store: KeyValueStore, settings) -> None:
        self.limiter = RateLimiter(
            store,
            limit=settings.login_rate_limit,
            window_seconds=settings.login_rate_window_seconds,
        )

    @staticmethod
    def key(ip: Optional[str], email: Optional[str]) -> str:
        return rate_key("login", ip, (email or "").strip().lower())

    async def check(self, ip: Optional[str], email: Optional[str]) -> int:
        return await self.limiter.hit(self.key(ip, email))

