"""Per-tab mirror of cacheable GET responses.

The mirror has no push channel: entries live until their TTL runs out or
until a successful write from the same tab clears the matching invalidation
groups. Route-to-TTL and write-to-group mappings come from
``hostelgate.service.invalidation`` so the server and the mirror agree.
"""

from __future__ import annotations

import json
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Pattern, Sequence
from urllib.parse import urlsplit

from hostelgate.logging import get_logger
from hostelgate.service.invalidation import category_for_path, client_ttl, groups_for_path

logger = get_logger(__name__)

_TAB_SEGMENT = re.compile(r"/tab/[^/]+", re.IGNORECASE)


@dataclass
class MirrorEntry:
    data: Any
    expires_at: float


class MirrorCache:
    def __init__(
        self,
        *,
        api_prefix: str = "/api",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_prefix = api_prefix.rstrip("/")
        self.clock = clock
        self._entries: Dict[str, MirrorEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def normalize_path(self, url: str) -> str:
        """Route path plus query, without host, API prefix or tab segment.

        ``/api/tab/ab12cd34/rooms?type=single`` and ``/rooms?type=single``
        normalize to the same value, so keys survive tab-id rotation.
        """
        parts = urlsplit(url)
        path = _TAB_SEGMENT.sub("", parts.path, count=1)
        if self.api_prefix and (
            path == self.api_prefix or path.startswith(self.api_prefix + "/")
        ):
            path = path[len(self.api_prefix):]
        path = "/" + path.strip("/") if path.strip("/") else "/"
        return f"{path}?{parts.query}" if parts.query else path

    @staticmethod
    def _route(normalized: str) -> str:
        return normalized.split("?", 1)[0]

    def make_key(self, url: str, params: Optional[Mapping[str, Any]] = None) -> str:
        encoded = json.dumps(dict(params), sort_keys=True, default=str) if params else ""
        return f"{self.normalize_path(url)}|{encoded}"

    def ttl_for_path(self, url: str) -> Optional[int]:
        """Seconds a GET of ``url`` may be mirrored, or ``None`` if never."""
        category = category_for_path(self._route(self.normalize_path(url)))
        if category is None:
            return None
        return client_ttl(category)

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self.clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.data

    def set(self, key: str, data: Any, ttl: int) -> None:
        with self._lock:
            self._entries[key] = MirrorEntry(data=data, expires_at=self.clock() + ttl)

    def store_response(
        self, url: str, data: Any, params: Optional[Mapping[str, Any]] = None
    ) -> bool:
        ttl = self.ttl_for_path(url)
        if not ttl:
            return False
        self.set(self.make_key(url, params), data, ttl)
        return True

    def invalidate_by_path(self, url: str) -> List[str]:
        """Drop entries belonging to every group a write to ``url`` touches."""
        route = self._route(self.normalize_path(url))
        patterns = [p for group in groups_for_path(route) for p in group.client_patterns]
        if not patterns:
            return []
        return self._drop_matching(patterns)

    def _drop_matching(self, patterns: Sequence[Pattern[str]]) -> List[str]:
        dropped: List[str] = []
        with self._lock:
            for key in list(self._entries):
                cached_route = self._route(key.split("|", 1)[0])
                if any(pattern.search(cached_route) for pattern in patterns):
                    del self._entries[key]
                    dropped.append(key)
        if dropped:
            logger.debug("mirror_invalidated", keys=len(dropped))
        return dropped

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
