from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Request, Response

from hostelgate.api.schemas import (
    AuthResponse,
    CacheInvalidateResponse,
    Envelope,
    LockdownRequest,
    LockdownResponse,
    LoginRequest,
    PrincipalResponse,
    PublicSettingsResponse,
    SessionInfo,
    SessionListResponse,
    UserStatusRequest,
)
from hostelgate.logging import get_logger, session_fingerprint
from hostelgate.service.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from hostelgate.service.gate import (
    AuthContext,
    RequestGate,
    is_admin_or_super_admin,
    is_super_admin,
)
from hostelgate.service.runtime import get_runtime
from hostelgate.storage.models import ROLE_STUDENT, ROLES, Principal, Session

logger = get_logger(__name__)

TAB_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"

# Mounted under the configured API prefix by the app
router = APIRouter(prefix="/tab/{tab_id}")


async def get_tab_id(tab_id: str = Path(..., pattern=TAB_ID_PATTERN)) -> str:
    return tab_id


async def require_session(request: Request, tab_id: str = Depends(get_tab_id)) -> AuthContext:
    runtime = get_runtime()
    ctx = await runtime.gate.authenticate(request.cookies, tab_id)
    request.state.auth = ctx
    return ctx


async def csrf_protect(
    request: Request,
    tab_id: str = Depends(get_tab_id),
    x_csrf_token: Optional[str] = Header(None, alias="X-CSRF-Token"),
) -> None:
    runtime = get_runtime()
    await runtime.gate.verify_csrf(request.method, request.cookies, tab_id, x_csrf_token)


async def check_emergency_lockdown(ctx: AuthContext = Depends(require_session)) -> None:
    await get_runtime().gate.check_emergency_lockdown(ctx.role)


async def require_admin(ctx: AuthContext = Depends(require_session)) -> AuthContext:
    return RequestGate.require(ctx, is_admin_or_super_admin, "Admin access required")


async def require_super_admin(ctx: AuthContext = Depends(require_session)) -> AuthContext:
    return RequestGate.require(ctx, is_super_admin, "Super admin access required")


def _principal_response(principal: Principal) -> PrincipalResponse:
    return PrincipalResponse(
        id=principal.id,
        email=principal.email,
        role=principal.role,
        full_name=principal.full_name,
        is_active=principal.is_active,
    )


def _auth_response(principal: Principal, session: Session) -> AuthResponse:
    runtime = get_runtime()
    return AuthResponse(
        user=_principal_response(principal),
        csrf_token=session.csrf_token,
        tab_id=session.tab_id,
        session_expires_at=runtime.sessions.absolute_deadline(session),
    )


def _apply_session_cookies(response: Response, session: Session, tab_id: str) -> None:
    runtime = get_runtime()
    settings = runtime.settings
    cookie_kwargs = dict(
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict" if settings.cookie_secure else "lax",
        max_age=runtime.sessions.absolute_ttl,
        path=settings.tab_cookie_path(tab_id),
    )
    response.set_cookie(runtime.sessions.cookie_name(tab_id), session.id, **cookie_kwargs)
    response.set_cookie(
        runtime.sessions.csrf_cookie_name(tab_id), session.csrf_token, **cookie_kwargs
    )


def _clear_session_cookies(response: Response, tab_id: str) -> None:
    runtime = get_runtime()
    settings = runtime.settings
    path = settings.tab_cookie_path(tab_id)
    samesite = "strict" if settings.cookie_secure else "lax"
    for name in (runtime.sessions.cookie_name(tab_id), runtime.sessions.csrf_cookie_name(tab_id)):
        response.delete_cookie(
            name, path=path, secure=settings.cookie_secure, httponly=True, samesite=samesite
        )


# Auth


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    tab_id: str = Depends(get_tab_id),
):
    """Authenticate with email and password and open a session for this tab.

    Raises:
        401: invalid credentials
        403: account deactivated
        429: too many attempts from this client for this account
        503: emergency lockdown (students only)
    """
    runtime = get_runtime()
    ip = request.client.host if request.client else None
    await runtime.login_throttle.check(ip, body.email)
    principal, session = await runtime.auth.login(
        body.email,
        body.password,
        ip=ip,
        user_agent=request.headers.get("user-agent"),
        device=body.device,
        tab_id=tab_id,
    )
    _apply_session_cookies(response, session, tab_id)
    return Envelope(status="ok", data=_auth_response(principal, session))


@router.post(
    "/auth/logout",
    response_model=Envelope,
    tags=["auth"],
    dependencies=[Depends(require_session), Depends(csrf_protect)],
)
async def logout(
    response: Response,
    tab_id: str = Depends(get_tab_id),
    ctx: AuthContext = Depends(require_session),
):
    runtime = get_runtime()
    await runtime.auth.logout(ctx.session_id, ctx.user_id)
    _clear_session_cookies(response, tab_id)
    return Envelope(status="ok", data={"message": "Logged out"})


@router.get(
    "/auth/me",
    response_model=Envelope,
    tags=["auth"],
    dependencies=[Depends(check_emergency_lockdown)],
)
async def me(ctx: AuthContext = Depends(require_session)):
    return Envelope(status="ok", data=_principal_response(ctx.principal))


@router.get("/auth/csrf-token", response_model=Envelope, tags=["auth"])
async def csrf_token(ctx: AuthContext = Depends(require_session)):
    """Hydration probe: returns the session's CSRF token and the principal."""
    return Envelope(status="ok", data=_auth_response(ctx.principal, ctx.session))


@router.get("/auth/sessions", response_model=Envelope, tags=["auth"])
async def list_sessions(ctx: AuthContext = Depends(require_session)):
    runtime = get_runtime()
    sessions = await runtime.sessions.list_user_sessions(ctx.user_id)
    items = [
        SessionInfo(
            id=s.id,
            created_at=s.created_at,
            last_seen=s.last_seen,
            ip=s.ip,
            user_agent=s.user_agent,
            device=s.device,
            tab_id=s.tab_id,
            current=s.id == ctx.session_id,
        )
        for s in sessions
    ]
    return Envelope(status="ok", data=SessionListResponse(items=items))


@router.delete(
    "/auth/sessions/{session_id}",
    response_model=Envelope,
    tags=["auth"],
    dependencies=[Depends(require_session), Depends(csrf_protect)],
)
async def revoke_session(
    session_id: str,
    response: Response,
    tab_id: str = Depends(get_tab_id),
    ctx: AuthContext = Depends(require_session),
):
    runtime = get_runtime()
    target = await runtime.sessions.get_session(session_id)
    # Unknown and foreign sessions look the same to the caller
    if target is None or target.user_id != ctx.user_id:
        logger.warning(
            "session_revoke_denied",
            user_id=ctx.user_id,
            target=session_fingerprint(session_id),
        )
        raise ForbiddenError("Cannot revoke this session")
    await runtime.sessions.delete_session(session_id, user_id=ctx.user_id)
    if session_id == ctx.session_id:
        _clear_session_cookies(response, tab_id)
    return Envelope(status="ok", data={"revoked": True})


# Settings


@router.get("/settings/public", response_model=Envelope, tags=["settings"])
async def public_settings():
    runtime = get_runtime()

    async def _load() -> dict:
        record = await runtime.directory.get_system_settings()
        if record is None:
            return PublicSettingsResponse().model_dump()
        return PublicSettingsResponse(
            emergency_lockdown=record.emergency_lockdown,
            maintenance_mode=record.maintenance_mode,
            settings=record.public,
        ).model_dump()

    data = await runtime.cache.get_or_set(
        runtime.cache.public_settings_key(),
        _load,
        runtime.cache.ttl_for("public_settings"),
    )
    return Envelope(status="ok", data=data)


# Administration


@router.put(
    "/admin/users/{role}/{user_id}/status",
    response_model=Envelope,
    tags=["admin"],
    dependencies=[Depends(require_admin), Depends(csrf_protect)],
)
async def set_user_status(
    role: str,
    user_id: str,
    body: UserStatusRequest,
    ctx: AuthContext = Depends(require_admin),
):
    if role not in ROLES:
        raise ValidationError("Unknown role", detail={"role": role})
    if role != ROLE_STUDENT and not is_super_admin(ctx):
        raise ForbiddenError("Only a super admin can change admin accounts")
    if user_id == ctx.user_id and not body.is_active:
        raise ConflictError("Cannot deactivate your own account")
    runtime = get_runtime()
    principal = await runtime.auth.set_principal_active(user_id, role, body.is_active)
    return Envelope(status="ok", data=_principal_response(principal))


@router.post(
    "/admin/cache/{group}/invalidate",
    response_model=Envelope,
    tags=["admin"],
    dependencies=[Depends(require_admin), Depends(csrf_protect)],
)
async def invalidate_cache_group(group: str, ctx: AuthContext = Depends(require_admin)):
    runtime = get_runtime()
    try:
        complete = await runtime.cache.invalidate(group)
    except KeyError:
        raise NotFoundError("Unknown cache group", detail={"group": group}) from None
    logger.info("cache_invalidated_by_admin", group=group, user_id=ctx.user_id)
    return Envelope(status="ok", data=CacheInvalidateResponse(group=group, complete=complete))


@router.put(
    "/super-admin/emergency-lockdown",
    response_model=Envelope,
    tags=["admin"],
    dependencies=[Depends(require_super_admin), Depends(csrf_protect)],
)
async def set_emergency_lockdown(
    body: LockdownRequest, ctx: AuthContext = Depends(require_super_admin)
):
    runtime = get_runtime()
    record = await runtime.directory.set_emergency_lockdown(body.enabled)
    await runtime.cache.invalidate_settings_caches()
    logger.warning(
        "emergency_lockdown_changed", enabled=record.emergency_lockdown, user_id=ctx.user_id
    )
    return Envelope(
        status="ok", data=LockdownResponse(emergency_lockdown=record.emergency_lockdown)
    )
