from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Mapping, Optional

from hostelgate.logging import get_logger, session_fingerprint
from hostelgate.service.cache import CacheService
from hostelgate.service.errors import (
    AccountInactiveError,
    AccountNotFoundError,
    AuthenticationError,
    CsrfError,
    EmergencyLockdownError,
    ForbiddenError,
    ServiceError,
    SessionExpiredError,
    SessionMissingError,
    TabContextError,
)
from hostelgate.service.sessions import SessionService
from hostelgate.storage.directory import PrincipalDirectory
from hostelgate.storage.models import (
    PRIVILEGED_ROLES,
    ROLE_STUDENT,
    ROLE_SUPER_ADMIN,
    Principal,
    Session,
)

logger = get_logger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass
class AuthContext:
    """Request-scoped identity attached once the gate lets a request through."""

    principal: Principal
    user_id: str
    role: str
    session_id: str
    session: Session
    tab_id: Optional[str] = None

    @property
    def csrf_token(self) -> str:
        return self.session.csrf_token


def is_admin(ctx: Optional[AuthContext]) -> bool:
    return bool(ctx and ctx.role in PRIVILEGED_ROLES)


def is_student(ctx: Optional[AuthContext]) -> bool:
    return bool(ctx and ctx.role == ROLE_STUDENT)


def is_super_admin(ctx: Optional[AuthContext]) -> bool:
    return bool(ctx and ctx.role == ROLE_SUPER_ADMIN)


def is_admin_or_super_admin(ctx: Optional[AuthContext]) -> bool:
    return bool(ctx and ctx.role in PRIVILEGED_ROLES)


class RequestGate:
    """Resolves tab-scoped cookies to sessions and principals.

    Request flow: session resolved -> principal loaded -> role authorized ->
    CSRF validated (mutating methods only). Authentication failures are
    always 401, permission failures 403; infrastructure errors while
    authenticating are logged and reported as 401 so nothing about the
    backend leaks to the client.
    """

    def __init__(
        self,
        sessions: SessionService,
        cache: CacheService,
        directory: PrincipalDirectory,
    ) -> None:
        self.sessions = sessions
        self.cache = cache
        self.directory = directory

    async def _resolve_session(
        self, cookies: Mapping[str, str], tab_id: Optional[str]
    ) -> Session:
        session_id = cookies.get(self.sessions.cookie_name(tab_id))
        if not session_id:
            raise SessionMissingError("Access denied. No session.")
        session = await self.sessions.get_session(session_id)
        if session is None:
            raise SessionExpiredError("Session expired or invalid.")
        if session.tab_id and tab_id and session.tab_id != tab_id:
            logger.warning(
                "session_tab_mismatch",
                session=session_fingerprint(session_id),
                session_tab=session.tab_id,
                request_tab=tab_id,
            )
            raise TabContextError("Invalid tab context.")
        return session

    async def _load_principal(self, user_id: str, role: str) -> Principal:
        cache_key = self.cache.user_key(user_id, role)
        ttl = self.cache.ttl_for("user_profiles")
        cached = await self.cache.get(cache_key)
        principal = await self.directory.get_principal(user_id, role)
        if cached is not None and principal is None:
            # Cached but gone from the directory: the account was deleted
            await self.cache.delete(cache_key)
            logger.info("principal_deleted", user_id=user_id, role=role)
            raise AccountNotFoundError("Account not found")
        if principal is not None:
            await self.cache.set(cache_key, principal.to_payload(), ttl)
        if principal is None or not principal.is_active:
            raise AccountInactiveError("Account inactive or not found")
        return principal

    async def authenticate(
        self, cookies: Mapping[str, str], tab_id: Optional[str] = None
    ) -> AuthContext:
        try:
            session = await self._resolve_session(cookies, tab_id)
            refreshed = await self.sessions.touch_session(session.id, session.user_id)
            if refreshed is None:
                raise SessionExpiredError("Session expired.")
            role = refreshed.role
            if not role:
                raise AuthenticationError("Session has no role.")
            principal = await self._load_principal(refreshed.user_id, role)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception(
                "auth_gate_failed",
                tab_id=tab_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise AuthenticationError("Unauthorized") from exc
        return AuthContext(
            principal=principal,
            user_id=refreshed.user_id,
            role=role,
            session_id=refreshed.id,
            session=refreshed,
            tab_id=tab_id,
        )

    async def verify_csrf(
        self,
        method: str,
        cookies: Mapping[str, str],
        tab_id: Optional[str],
        header_token: Optional[str],
    ) -> None:
        """Double-submit check; does not rely on ``authenticate`` having run."""
        if method.upper() in SAFE_METHODS:
            return
        try:
            session = await self._resolve_session(cookies, tab_id)
        except AuthenticationError:
            raise
        except Exception as exc:
            logger.exception("csrf_check_failed", error_type=type(exc).__name__, error=str(exc))
            raise CsrfError("CSRF validation failed") from exc
        if not header_token or not hmac.compare_digest(
            header_token.encode(), session.csrf_token.encode()
        ):
            logger.warning("csrf_token_mismatch", session=session_fingerprint(session.id))
            raise CsrfError("Invalid CSRF token")

    @staticmethod
    def require(ctx: Optional[AuthContext], predicate, message: str) -> AuthContext:
        if ctx is None or not predicate(ctx):
            raise ForbiddenError(message)
        return ctx

    async def check_emergency_lockdown(self, role: Optional[str]) -> None:
        """Reject non-privileged roles during lockdown.

        Fails open: if the settings record cannot be read the request goes
        through rather than locking everyone out.
        """
        try:
            settings = await self.directory.get_system_settings()
        except Exception as exc:
            logger.error(
                "lockdown_check_failed", error_type=type(exc).__name__, error=str(exc)
            )
            return
        if settings is None or not settings.emergency_lockdown:
            return
        if role in PRIVILEGED_ROLES:
            return
        raise EmergencyLockdownError()
