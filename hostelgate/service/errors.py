from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``:
    - unauthorized (401): who are you
    - forbidden (403): you may not
    - service_unavailable (503): the system is locked down
    - validation_error (400), not_found (404), conflict (409)
    - rate_limited (429): slow down
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class SessionMissingError(AuthenticationError):
    """No session cookie for this tab (401)."""
    pass


class SessionExpiredError(AuthenticationError):
    """Session has expired or was revoked (401)."""
    pass


class TabContextError(AuthenticationError):
    """Session belongs to a different browser tab (401)."""
    pass


class AccountNotFoundError(AuthenticationError):
    """Principal behind the session no longer exists (401)."""
    pass


class AccountInactiveError(AuthenticationError):
    """Principal exists but is deactivated (401)."""
    pass


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class CsrfError(ForbiddenError):
    """Missing or mismatched CSRF token (403)."""
    error_code = "csrf_invalid"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict (409)."""
    status_code = 409
    error_code = "conflict"


class RateLimitedError(ServiceError):
    """Too many attempts from one client within the window (429)."""
    status_code = 429
    error_code = "rate_limited"

    def __init__(self, message: str = "Too many requests, please try again later.", *, retry_after: int = 0) -> None:
        super().__init__(message, detail={"retry_after": retry_after})
        self.retry_after = retry_after

class ServiceUnavailableError(ServiceError):
    """Service temporarily refusing requests (503)."""
    status_code = 503
    error_code = "service_unavailable"


class EmergencyLockdownError(ServiceUnavailableError):
    """Emergency lockdown is active for non-privileged roles (503)."""
    error_code = "emergency_lockdown"

    def __init__(self, message: str = "System is under emergency lockdown. Please try again later.") -> None:
        super().__init__(message, detail={"emergencyLockdown": True})


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "SessionMissingError",
    "SessionExpiredError",
    "TabContextError",
    "AccountNotFoundError",
    "AccountInactiveError",
    "ForbiddenError",
    "CsrfError",
    "NotFoundError",
    "ConflictError",
    "RateLimitedError",
    "ServiceUnavailableError",
    "EmergencyLockdownError",
]
