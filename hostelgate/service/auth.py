from __future__ import annotations

from typing import Optional, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerifyMismatchError

from hostelgate.logging import get_logger, session_fingerprint
from hostelgate.service.cache import CacheService
from hostelgate.service.errors import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from hostelgate.service.gate import RequestGate
from hostelgate.service.sessions import SessionService
from hostelgate.storage.directory import PrincipalDirectory
from hostelgate.storage.models import Principal, Session


class AuthService:
    """Password login and logout on top of the session store.

    Passwords are argon2id hashes kept by the principal directory. Logins
    during an emergency lockdown are refused for non-privileged roles, using
    the same fail-open check as the request gate.
    """

    def __init__(
        self,
        directory: PrincipalDirectory,
        sessions: SessionService,
        cache: CacheService,
        gate: RequestGate,
    ) -> None:
        self.directory = directory
        self.sessions = sessions
        self.cache = cache
        self.gate = gate
        self.logger = get_logger(__name__)
        self._pwd_hasher = PasswordHasher(type=Type.ID)

    def hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def verify_password(self, stored_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerifyMismatchError):
            return False

    async def login(
        self,
        email: str,
        password: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        device: Optional[str] = None,
        tab_id: Optional[str] = None,
    ) -> Tuple[Principal, Session]:
        if not email or not password:
            raise ValidationError("Email and password are required")
        record = await self.directory.find_credentials(email)
        if record is None:
            self.logger.info("login_failed", reason="unknown_email")
            raise AuthenticationError("Invalid credentials")
        principal, stored_hash = record
        if not self.verify_password(stored_hash, password):
            self.logger.warning("password_verification_failed", user_id=principal.id)
            raise AuthenticationError("Invalid credentials")
        if not principal.is_active:
            self.logger.info("login_rejected_inactive", user_id=principal.id)
            raise ForbiddenError("Account deactivated. Contact an administrator.")

        await self.gate.check_emergency_lockdown(principal.role)

        _, session = await self.sessions.create_session(
            principal.id,
            principal.role,
            ip=ip,
            user_agent=user_agent,
            device=device,
            tab_id=tab_id,
        )
        await self.cache.set(
            self.cache.user_key(principal.id, principal.role),
            principal.to_payload(),
            self.cache.ttl_for("user_profiles"),
        )
        self.logger.info(
            "login_succeeded",
            user_id=principal.id,
            role=principal.role,
            session=session_fingerprint(session.id),
            tab_id=tab_id,
        )
        return principal, session

    async def logout(self, session_id: Optional[str], user_id: Optional[str] = None) -> None:
        if not session_id:
            return
        await self.sessions.delete_session(session_id, user_id=user_id)
        self.logger.info("logout", user_id=user_id, session=session_fingerprint(session_id))

    async def set_principal_active(
        self, user_id: str, role: str, active: bool
    ) -> Principal:
        """Activate or deactivate a principal.

        Deactivation also revokes every live session of that principal.
        """
        principal = await self.directory.set_active(user_id, role, active)
        if principal is None:
            raise NotFoundError("User not found", detail={"user_id": user_id, "role": role})
        await self.cache.invalidate_user_caches()
        revoked = 0
        if not active:
            revoked = await self.sessions.revoke_user_sessions(user_id)
        self.logger.info(
            "principal_status_changed",
            user_id=user_id,
            role=role,
            active=active,
            revoked_sessions=revoked,
        )
        return principal
