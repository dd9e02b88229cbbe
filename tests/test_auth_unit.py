"""Unit tests for auth service.

Tests for:
- Password hashing and verification
- Login outcomes and the sessions they create
- Logout
- Activating and deactivating principals
"""

import pytest

from hostelgate.config import Settings
from hostelgate.service.auth import AuthService
from hostelgate.service.cache import CacheService
from hostelgate.service.errors import (
    AuthenticationError,
    EmergencyLockdownError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from hostelgate.service.gate import RequestGate
from hostelgate.service.sessions import SessionService
from hostelgate.storage.directory import MemoryDirectory
from hostelgate.storage.memory import MemoryStore

PASSWORD = "TestPassword123!"


@pytest.fixture
def directory():
    return MemoryDirectory()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def auth_service(directory, store, clock):
    """Create auth service for testing."""
    sessions = SessionService(store, Settings(), clock=clock)
    cache = CacheService(store)
    gate = RequestGate(sessions, cache, directory)
    return AuthService(directory, sessions, cache, gate)


@pytest.fixture
def test_user(directory, auth_service):
    """Create a student with a password."""
    return directory.add_principal(
        "test@example.com",
        "student",
        password_hash=auth_service.hash_password(PASSWORD),
        user_id="u1",
    )


class TestPasswordHashing:
    """Tests for password hashing."""

    def test_hash_is_argon2id(self, auth_service):
        assert auth_service.hash_password(PASSWORD).startswith("$argon2id$")

    def test_verify(self, auth_service):
        stored = auth_service.hash_password(PASSWORD)
        assert auth_service.verify_password(stored, PASSWORD)
        assert not auth_service.verify_password(stored, "WrongPassword!")

    def test_malformed_hash_is_a_mismatch(self, auth_service):
        assert not auth_service.verify_password("not-a-hash", PASSWORD)


class TestLogin:
    """Tests for password login."""

    async def test_login_creates_tab_session(self, auth_service, test_user):
        principal, session = await auth_service.login(
            "TEST@example.com", PASSWORD, ip="10.0.0.1", tab_id="tabA"
        )
        assert principal.id == "u1"
        assert session.tab_id == "tabA"
        assert session.ip == "10.0.0.1"
        stored = await auth_service.sessions.get_session(session.id)
        assert stored.user_id == "u1"

    async def test_login_caches_principal(self, auth_service, test_user):
        await auth_service.login("test@example.com", PASSWORD)
        cached = await auth_service.cache.get(auth_service.cache.user_key("u1", "student"))
        assert cached["email"] == "test@example.com"

    async def test_wrong_password(self, auth_service, test_user):
        with pytest.raises(AuthenticationError) as exc:
            await auth_service.login("test@example.com", "nope")
        assert exc.value.message == "Invalid credentials"

    async def test_unknown_email_reads_the_same(self, auth_service):
        with pytest.raises(AuthenticationError) as exc:
            await auth_service.login("ghost@example.com", PASSWORD)
        assert exc.value.message == "Invalid credentials"

    async def test_empty_credentials(self, auth_service):
        with pytest.raises(ValidationError):
            await auth_service.login("", "")

    async def test_inactive_account(self, auth_service, directory, test_user):
        await directory.set_active("u1", "student", False)
        with pytest.raises(ForbiddenError):
            await auth_service.login("test@example.com", PASSWORD)

    async def test_lockdown_blocks_student_login(self, auth_service, directory, test_user):
        await directory.set_emergency_lockdown(True)
        with pytest.raises(EmergencyLockdownError):
            await auth_service.login("test@example.com", PASSWORD)
        assert await auth_service.sessions.list_user_sessions("u1") == []


class TestLogoutAndStatus:
    """Tests for logout and principal status changes."""

    async def test_logout_deletes_session(self, auth_service, test_user):
        _, session = await auth_service.login("test@example.com", PASSWORD)
        await auth_service.logout(session.id, "u1")
        assert await auth_service.sessions.get_session(session.id) is None

    async def test_logout_without_session_is_noop(self, auth_service):
        await auth_service.logout(None)

    async def test_deactivation_revokes_every_session(self, auth_service, test_user):
        for tab in ("tabA", "tabB"):
            await auth_service.login("test@example.com", PASSWORD, tab_id=tab)
        principal = await auth_service.set_principal_active("u1", "student", False)
        assert principal.is_active is False
        assert await auth_service.sessions.list_user_sessions("u1") == []

    async def test_reactivation_keeps_sessions(self, auth_service, test_user):
        _, session = await auth_service.login("test@example.com", PASSWORD)
        await auth_service.set_principal_active("u1", "student", True)
        assert await auth_service.sessions.get_session(session.id) is not None

    async def test_unknown_principal(self, auth_service):
        with pytest.raises(NotFoundError):
            await auth_service.set_principal_active("missing", "student", False)
