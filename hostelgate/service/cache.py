from __future__ import annotations

import inspect
import json
from typing import Any, Awaitable, Callable, Optional, Union

from hostelgate.logging import get_logger
from hostelgate.service.invalidation import get_group, server_ttl
from hostelgate.storage.errors import StoreUnavailable
from hostelgate.storage.kv import KeyValueStore

logger = get_logger(__name__)

FetchFn = Callable[[], Union[Any, Awaitable[Any]]]


class CacheService:
    """Best-effort JSON cache over the shared key-value store.

    Store failures are logged and collapsed into a miss (``None``) or a
    failed write (``False``); callers never see them. Caching may slow down
    when the store is unhealthy but must never change an answer.
    """

    def __init__(self, store: KeyValueStore, *, default_ttl: int = 300) -> None:
        self.store = store
        self.default_ttl = default_ttl

    # Key namespace

    @staticmethod
    def generate_key(prefix: str, *parts: Any) -> str:
        return ":".join([prefix, *(str(part) for part in parts if part)])

    def settings_key(self) -> str:
        return self.generate_key("settings", "all")

    def public_settings_key(self) -> str:
        return self.generate_key("settings", "public")

    def room_availability_key(self, room_type: str = "all", capacity: Optional[int] = None) -> str:
        return self.generate_key("rooms", "available", room_type, capacity)

    def rooms_key(self) -> str:
        return self.generate_key("rooms", "all")

    def room_key(self, room_id: str) -> str:
        return self.generate_key("room", room_id)

    def room_occupants_key(self, room_id: str) -> str:
        return self.generate_key("room_occupants", room_id)

    def user_key(self, user_id: str, role: str) -> str:
        return self.generate_key("user", role, user_id)

    def students_key(self) -> str:
        return self.generate_key("students", "all")

    def student_key(self, student_id: str) -> str:
        return self.generate_key("student", student_id)

    def admins_key(self) -> str:
        return self.generate_key("admins", "all")

    def admin_key(self, admin_id: str) -> str:
        return self.generate_key("admin", admin_id)

    def bookings_key(self) -> str:
        return self.generate_key("bookings", "all")

    def booking_key(self, booking_id: str) -> str:
        return self.generate_key("booking", booking_id)

    def student_bookings_key(self, student_id: str) -> str:
        return self.generate_key("student_bookings", student_id)

    def public_content_key(self) -> str:
        return self.generate_key("public_content", "all")

    def public_content_by_type_key(self, content_type: str) -> str:
        return self.generate_key("public_content", "type", content_type)

    def dashboard_stats_key(self) -> str:
        return self.generate_key("dashboard", "stats")

    def room_occupancy_stats_key(self) -> str:
        return self.generate_key("stats", "occupancy")

    # Operations

    async def get(self, key: str) -> Any:
        try:
            raw = await self.store.get(key)
        except StoreUnavailable as exc:
            logger.warning("cache_get_failed", key=key, error=str(exc))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("cache_decode_failed", key=key, error=str(exc))
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError) as exc:
            logger.warning("cache_encode_failed", key=key, error=str(exc))
            return False
        try:
            await self.store.set(key, payload, ex=ttl or self.default_ttl)
        except StoreUnavailable as exc:
            logger.warning("cache_set_failed", key=key, error=str(exc))
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            await self.store.delete(key)
        except StoreUnavailable as exc:
            logger.warning("cache_delete_failed", key=key, error=str(exc))
            return False
        return True

    async def delete_pattern(self, pattern: str) -> bool:
        try:
            deleted = await self.store.delete_pattern(pattern)
        except StoreUnavailable as exc:
            logger.warning("cache_delete_pattern_failed", pattern=pattern, error=str(exc))
            return False
        if deleted:
            logger.debug("cache_pattern_deleted", pattern=pattern, deleted=deleted)
        return True

    async def get_or_set(self, key: str, fetch: FetchFn, ttl: Optional[int] = None) -> Any:
        """Read-through helper.

        Not mutex-protected: concurrent misses may each call ``fetch``. Only
        use it for idempotent reads.
        """
        data = await self.get(key)
        if data is not None:
            logger.debug("cache_hit", key=key)
            return data
        logger.debug("cache_miss", key=key)
        data = fetch()
        if inspect.isawaitable(data):
            data = await data
        if data is not None:
            await self.set(key, data, ttl)
        return data

    # Invalidation

    async def invalidate(self, group_name: str) -> bool:
        """Clear every key pattern of an invalidation group.

        Raises ``KeyError`` for an unknown group name.
        """
        group = get_group(group_name)
        results = [await self.delete_pattern(pattern) for pattern in group.server_patterns]
        logger.info("cache_group_invalidated", group=group.name, complete=all(results))
        return all(results)

    async def invalidate_room_caches(self) -> bool:
        return await self.invalidate("rooms")

    async def invalidate_user_caches(self) -> bool:
        return await self.invalidate("users")

    async def invalidate_booking_caches(self) -> bool:
        return await self.invalidate("bookings")

    async def invalidate_settings_caches(self) -> bool:
        return await self.invalidate("settings")

    async def invalidate_public_content_caches(self) -> bool:
        return await self.invalidate("public_content")

    @staticmethod
    def ttl_for(category: str) -> int:
        return server_ttl(category)
