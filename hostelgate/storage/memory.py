from __future__ import annotations

import fnmatch
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from hostelgate.logging import get_logger


class MemoryStore:
    """In-process stand-in for Redis used by tests and local development.

    Implements the ``KeyValueStore`` protocol with lazy expiry: entries past
    their deadline are dropped when next touched or enumerated. The clock is
    injectable so TTL behaviour can be tested without sleeping.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self.logger = get_logger(__name__)
        self.clock = clock
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}
        # RLock so compound operations can nest acquisitions
        self._data_lock = threading.RLock()

    async def connect(self) -> "MemoryStore":
        return self

    @property
    def is_connected(self) -> bool:
        return True

    def _live_value(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._values.get(key)
        if entry is None:
            return None
        _, deadline = entry
        if deadline is not None and deadline <= self.clock():
            del self._values[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        with self._data_lock:
            entry = self._live_value(key)
            return entry[0] if entry else None

    async def set(
        self,
        key: str,
        value: str,
        *,
        ex: Optional[int] = None,
        px: Optional[int] = None,
        xx: bool = False,
    ) -> bool:
        deadline: Optional[float] = None
        if px is not None:
            deadline = self.clock() + px / 1000.0
        elif ex is not None:
            deadline = self.clock() + ex
        with self._data_lock:
            if xx and self._live_value(key) is None and key not in self._zsets:
                return False
            self._zsets.pop(key, None)
            self._values[key] = (value, deadline)
        return True

    async def incr(self, key: str, *, ex: Optional[int] = None) -> int:
        with self._data_lock:
            entry = self._live_value(key)
            if entry is None:
                deadline = self.clock() + ex if ex is not None else None
                count = 1
            else:
                count = int(entry[0]) + 1
                deadline = entry[1]
            self._values[key] = (str(count), deadline)
        return count

    async def delete(self, *keys: str) -> int:
        removed = 0
        with self._data_lock:
            for key in keys:
                if self._live_value(key) is not None:
                    del self._values[key]
                    removed += 1
                elif self._zsets.pop(key, None) is not None:
                    removed += 1
        return removed

    async def keys(self, pattern: str) -> List[str]:
        with self._data_lock:
            live = [key for key in list(self._values) if self._live_value(key) is not None]
            live.extend(self._zsets)
        return [key for key in live if fnmatch.fnmatchcase(key, pattern)]

    async def delete_pattern(self, pattern: str) -> int:
        matched = await self.keys(pattern)
        if not matched:
            return 0
        return await self.delete(*matched)

    async def pttl(self, key: str) -> int:
        with self._data_lock:
            if key in self._zsets:
                return -1
            entry = self._live_value(key)
            if entry is None:
                return -2
            deadline = entry[1]
            if deadline is None:
                return -1
            return max(0, int((deadline - self.clock()) * 1000))

    async def ttl(self, key: str) -> int:
        remaining = await self.pttl(key)
        if remaining < 0:
            return remaining
        return remaining // 1000

    async def zadd(self, key: str, member: str, score: float) -> None:
        with self._data_lock:
            self._zsets.setdefault(key, {})[member] = float(score)

    async def zrange(self, key: str) -> List[str]:
        with self._data_lock:
            members = self._zsets.get(key, {})
            return [m for m, _ in sorted(members.items(), key=lambda item: (item[1], item[0]))]

    async def zscore(self, key: str, member: str) -> Optional[float]:
        with self._data_lock:
            return self._zsets.get(key, {}).get(member)

    async def zrem(self, key: str, *members: str) -> int:
        removed = 0
        with self._data_lock:
            zset = self._zsets.get(key)
            if not zset:
                return 0
            for member in members:
                if zset.pop(member, None) is not None:
                    removed += 1
            if not zset:
                # Redis drops empty sorted sets
                del self._zsets[key]
        return removed

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def describe(self) -> Dict[str, str]:
        return {"backend": "memory"}
