"""Tests for the shared invalidation and TTL tables."""

import pytest

from hostelgate.service.invalidation import (
    CACHE_TTLS,
    INVALIDATION_GROUPS,
    category_for_path,
    client_ttl,
    get_group,
    groups_for_path,
    server_ttl,
)


class TestGroups:
    def test_group_lookup(self):
        assert get_group("rooms").name == "rooms"
        with pytest.raises(KeyError):
            get_group("missing")

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/rooms", {"rooms"}),
            ("/rooms/12", {"rooms"}),
            ("/bookings/3/approve", {"bookings"}),
            ("/students/4", {"users"}),
            ("/admin/users/student/4/status", {"users"}),
            ("/settings", {"settings"}),
            ("/super-admin/emergency-lockdown", {"settings"}),
            ("/super-admin/content/home", {"public_content"}),
            ("/admin/cache/rooms/invalidate", {"rooms"}),
            ("/admin/cache/public_content/invalidate", {"public_content"}),
            ("/admin/cache/nope/invalidate", set()),
            ("/auth/login", set()),
            ("/roomsfoo", set()),
        ],
    )
    def test_groups_for_write_path(self, path, expected):
        assert {g.name for g in groups_for_path(path)} == expected

    def test_user_patterns_never_touch_session_keys(self):
        import fnmatch

        for pattern in get_group("users").server_patterns:
            assert not fnmatch.fnmatchcase("sessions:user:1", pattern)
            assert not fnmatch.fnmatchcase("sess:abc", pattern)

    def test_every_group_has_server_patterns(self):
        assert all(group.server_patterns for group in INVALIDATION_GROUPS.values())


class TestTtls:
    def test_server_ttl_defaults(self):
        assert server_ttl("room_availability") == 30
        assert server_ttl("unknown") == CACHE_TTLS["default"]

    def test_client_ttl_never_exceeds_server(self):
        for category in CACHE_TTLS:
            assert client_ttl(category) <= server_ttl(category)
        # settings: client prefers 120s but the server only keeps 5s
        assert client_ttl("settings") == 5

    @pytest.mark.parametrize(
        "path,category",
        [
            ("/rooms/5/occupants", "room_occupants"),
            ("/rooms/available", "room_availability"),
            ("/rooms/5", "room_details"),
            ("/rooms", "room_details"),
            ("/bookings", "booking_history"),
            ("/students/5/bookings", "booking_history"),
            ("/students/5", "user_profiles"),
            ("/students", "user_lists"),
            ("/settings/public", "public_settings"),
            ("/settings", "settings"),
            ("/public/content/faq", "public_content"),
            ("/auth/me", None),
        ],
    )
    def test_category_for_path(self, path, category):
        assert category_for_path(path) == category
