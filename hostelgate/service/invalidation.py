"""Cache invalidation groups and TTL categories.

Both the server-side ``CacheService`` and the client-side ``MirrorCache``
read these tables, so a write that clears a group on the server clears the
matching routes in every tab's mirror.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple


@dataclass(frozen=True)
class InvalidationGroup:
    """Everything that must be dropped together when one kind of data changes.

    ``server_patterns`` are key-value store glob patterns. ``client_triggers``
    match the normalized path of a mutating request; ``client_patterns``
    match the normalized paths of cached GET responses to drop.
    """

    name: str
    server_patterns: Tuple[str, ...]
    client_triggers: Tuple[Pattern[str], ...] = ()
    client_patterns: Tuple[Pattern[str], ...] = ()


def _routes(*patterns: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


ROOMS = InvalidationGroup(
    name="rooms",
    server_patterns=("rooms:*", "room:*", "room_occupants:*", "stats:*", "dashboard:*"),
    client_triggers=_routes(r"^/rooms(/|$)"),
    client_patterns=_routes(r"^/rooms", r"^/rooms/\d+/occupants"),
)

USERS = InvalidationGroup(
    name="users",
    server_patterns=(
        "user:*",
        "students:*",
        "student:*",
        "admins:*",
        "admin:*",
        "student_bookings:*",
        "room_occupants:*",
    ),
    client_triggers=_routes(r"^/students(/|$)", r"^/admins(/|$)", r"^/admin/users(/|$)"),
    client_patterns=_routes(
        r"^/students",
        r"^/students/\d+/bookings",
        r"^/students/\d+$",
        r"^/admins",
        r"^/rooms/\d+/occupants",
    ),
)

BOOKINGS = InvalidationGroup(
    name="bookings",
    server_patterns=(
        "bookings:*",
        "booking:*",
        "student_bookings:*",
        "room_occupants:*",
        "stats:*",
        "dashboard:*",
    ),
    client_triggers=_routes(r"^/bookings(/|$)"),
    client_patterns=_routes(
        r"^/bookings",
        r"^/students/\d+/bookings",
        r"^/rooms/\d+/occupants",
        r"^/students/\d+$",
        r"^/students$",
    ),
)

SETTINGS = InvalidationGroup(
    name="settings",
    server_patterns=("settings:*",),
    client_triggers=_routes(r"^/settings(/|$)", r"^/super-admin/emergency-lockdown$"),
    client_patterns=_routes(r"^/settings"),
)

PUBLIC_CONTENT = InvalidationGroup(
    name="public_content",
    server_patterns=("public_content:*",),
    client_triggers=_routes(r"^/super-admin/content(/|$)", r"^/public/content(/|$)"),
    client_patterns=_routes(r"^/public/content", r"^/super-admin/content"),
)

INVALIDATION_GROUPS: Dict[str, InvalidationGroup] = {
    group.name: group for group in (ROOMS, USERS, BOOKINGS, SETTINGS, PUBLIC_CONTENT)
}


def get_group(name: str) -> InvalidationGroup:
    try:
        return INVALIDATION_GROUPS[name]
    except KeyError:
        raise KeyError(f"unknown invalidation group: {name}") from None


# Manual invalidation names its group in the path
_ADMIN_INVALIDATE_ROUTE = re.compile(r"^/admin/cache/([^/]+)/invalidate$")


def groups_for_path(path: str) -> List[InvalidationGroup]:
    """Groups whose client triggers match a mutating request's path."""
    manual = _ADMIN_INVALIDATE_ROUTE.match(path)
    if manual:
        group = INVALIDATION_GROUPS.get(manual.group(1))
        return [group] if group else []
    return [
        group
        for group in INVALIDATION_GROUPS.values()
        if any(trigger.search(path) for trigger in group.client_triggers)
    ]


# Server TTLs in seconds, by data category
CACHE_TTLS: Dict[str, int] = {
    # Volatile, read constantly
    "room_availability": 30,
    "dashboard_stats": 30,
    "room_occupants": 60,
    "room_details": 300,
    "user_profiles": 1800,
    "booking_history": 3600,
    "user_lists": 3600,
    "settings": 5,
    "public_settings": 7200,
    # Near-static
    "public_content": 14400,
    "default": 300,
}

# Preferred client TTLs; effective values never exceed the server's
_CLIENT_TTLS: Dict[str, int] = {
    "room_details": 60,
    "room_availability": 30,
    "room_occupants": 30,
    "booking_history": 30,
    "user_lists": 60,
    "user_profiles": 60,
    "settings": 120,
    "public_settings": 120,
    "public_content": 300,
}


def server_ttl(category: str) -> int:
    return CACHE_TTLS.get(category, CACHE_TTLS["default"])


def client_ttl(category: str) -> int:
    preferred = _CLIENT_TTLS.get(category, CACHE_TTLS["default"])
    return min(preferred, server_ttl(category))


# Ordered most specific first
CACHEABLE_ROUTES: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"^/rooms/\d+/occupants$", re.I), "room_occupants"),
    (re.compile(r"^/rooms/available$", re.I), "room_availability"),
    (re.compile(r"^/rooms/\d+$", re.I), "room_details"),
    (re.compile(r"^/rooms$", re.I), "room_details"),
    (re.compile(r"^/bookings(/\d+)?$", re.I), "booking_history"),
    (re.compile(r"^/students/\d+/bookings$", re.I), "booking_history"),
    (re.compile(r"^/students/\d+$", re.I), "user_profiles"),
    (re.compile(r"^/students$", re.I), "user_lists"),
    (re.compile(r"^/settings/public$", re.I), "public_settings"),
    (re.compile(r"^/settings$", re.I), "settings"),
    (re.compile(r"^/public/content/[^/]+$", re.I), "public_content"),
)


def category_for_path(path: str) -> Optional[str]:
    for pattern, category in CACHEABLE_ROUTES:
        if pattern.match(path):
            return category
    return None
