from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "csrf_invalid",
    "not_found",
    "validation_error",
    "conflict",
    "service_unavailable",
    "emergency_lockdown",
    "rate_limited",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format shared by every JSON route."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = unicodedata.normalize("NFKC", value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=128)
    device: Optional[str] = Field(default=None, max_length=64)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class PrincipalResponse(BaseModel):
    id: str
    email: str
    role: str
    full_name: Optional[str] = None
    is_active: bool = True


class AuthResponse(BaseModel):
    """Login and hydration payload; the CSRF token must be echoed on writes."""

    user: PrincipalResponse
    csrf_token: str
    tab_id: Optional[str] = None
    session_expires_at: Optional[int] = None


class SessionInfo(BaseModel):
    id: str
    created_at: int
    last_seen: int
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    device: Optional[str] = None
    tab_id: Optional[str] = None
    current: bool = False


class SessionListResponse(BaseModel):
    items: List[SessionInfo]


class UserStatusRequest(BaseModel):
    is_active: bool


class LockdownRequest(BaseModel):
    enabled: bool


class LockdownResponse(BaseModel):
    emergency_lockdown: bool


class CacheInvalidateResponse(BaseModel):
    group: str
    complete: bool


class PublicSettingsResponse(BaseModel):
    emergency_lockdown: bool = False
    maintenance_mode: bool = False
    settings: Dict[str, Any] = Field(default_factory=dict)
