from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"

ROLES = frozenset({ROLE_STUDENT, ROLE_ADMIN, ROLE_SUPER_ADMIN})
PRIVILEGED_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})


@dataclass
class Session:
    """Session record stored under ``sess:<id>`` in the key-value store.

    Timestamps are whole epoch seconds. ``id`` is the opaque cookie value and
    is not part of the stored payload.
    """

    id: str
    user_id: str
    roles: List[str]
    created_at: int
    last_seen: int
    csrf_token: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    device: Optional[str] = None
    tab_id: Optional[str] = None

    @property
    def role(self) -> Optional[str]:
        return self.roles[0] if self.roles else None

    def to_payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("id")
        return data

    @classmethod
    def from_payload(cls, session_id: str, data: Dict[str, Any]) -> "Session":
        roles = data.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        return cls(
            id=session_id,
            user_id=str(data["user_id"]),
            roles=list(roles),
            created_at=int(data["created_at"]),
            last_seen=int(data.get("last_seen", data["created_at"])),
            csrf_token=data["csrf_token"],
            ip=data.get("ip"),
            user_agent=data.get("user_agent"),
            device=data.get("device"),
            tab_id=data.get("tab_id"),
        )


@dataclass
class Principal:
    """Snapshot of an authenticated student or admin record."""

    id: str
    email: str
    role: str
    full_name: Optional[str] = None
    is_active: bool = True
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Principal":
        return cls(
            id=str(data["id"]),
            email=data["email"],
            role=data["role"],
            full_name=data.get("full_name"),
            is_active=bool(data.get("is_active", True)),
            meta=dict(data.get("meta") or {}),
        )


@dataclass
class SystemSettings:
    """Global settings record consulted by the lockdown gate."""

    emergency_lockdown: bool = False
    maintenance_mode: bool = False
    public: Dict[str, Any] = field(default_factory=dict)
