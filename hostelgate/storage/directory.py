from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from typing import Dict, Optional, Protocol, Tuple

from hostelgate.logging import get_logger
from hostelgate.storage.models import (
    PRIVILEGED_ROLES,
    ROLE_STUDENT,
    ROLES,
    Principal,
    SystemSettings,
)


class PrincipalDirectory(Protocol):
    """Source of truth for students, admins and the global settings record.

    Students and admins live in separate collections; lookups therefore take
    the role so the right collection is consulted.
    """

    async def get_principal(self, user_id: str, role: str) -> Optional[Principal]: ...

    async def find_credentials(self, email: str) -> Optional[Tuple[Principal, str]]: ...

    async def set_active(self, user_id: str, role: str, active: bool) -> Optional[Principal]: ...

    async def get_system_settings(self) -> Optional[SystemSettings]: ...

    async def set_emergency_lockdown(self, enabled: bool) -> SystemSettings: ...


def collection_for_role(role: str) -> str:
    return "users" if role == ROLE_STUDENT else "admins"


class MemoryDirectory:
    """In-memory directory for development and tests."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.collections: Dict[str, Dict[str, Principal]] = {"users": {}, "admins": {}}
        self.password_hashes: Dict[str, str] = {}
        self.system_settings = SystemSettings()
        self._data_lock = threading.RLock()

    def add_principal(
        self,
        email: str,
        role: str = ROLE_STUDENT,
        *,
        password_hash: Optional[str] = None,
        full_name: Optional[str] = None,
        is_active: bool = True,
        user_id: Optional[str] = None,
    ) -> Principal:
        if role not in ROLES:
            raise ValueError(f"unknown role: {role}")
        principal = Principal(
            id=user_id or uuid.uuid4().hex,
            email=email.lower(),
            role=role,
            full_name=full_name,
            is_active=is_active,
        )
        with self._data_lock:
            self.collections[collection_for_role(role)][principal.id] = principal
            if password_hash:
                self.password_hashes[principal.id] = password_hash
        return principal

    def delete_principal(self, user_id: str, role: str) -> bool:
        with self._data_lock:
            self.password_hashes.pop(user_id, None)
            return self.collections[collection_for_role(role)].pop(user_id, None) is not None

    async def get_principal(self, user_id: str, role: str) -> Optional[Principal]:
        with self._data_lock:
            principal = self.collections[collection_for_role(role)].get(user_id)
            if principal is None:
                return None
            # Admin records carry their own admin/super_admin role
            if role in PRIVILEGED_ROLES and principal.role not in PRIVILEGED_ROLES:
                return None
            return replace(principal, meta=dict(principal.meta))

    async def find_credentials(self, email: str) -> Optional[Tuple[Principal, str]]:
        needle = email.strip().lower()
        with self._data_lock:
            # Students first, then admins
            for collection in ("users", "admins"):
                for principal in self.collections[collection].values():
                    if principal.email == needle:
                        pwd_hash = self.password_hashes.get(principal.id)
                        if not pwd_hash:
                            self.logger.warning("password_record_missing", user_id=principal.id)
                            return None
                        return replace(principal), pwd_hash
        return None

    async def set_active(self, user_id: str, role: str, active: bool) -> Optional[Principal]:
        with self._data_lock:
            principal = self.collections[collection_for_role(role)].get(user_id)
            if principal is None:
                return None
            principal.is_active = active
            return replace(principal)

    async def get_system_settings(self) -> Optional[SystemSettings]:
        with self._data_lock:
            return replace(self.system_settings, public=dict(self.system_settings.public))

    async def set_emergency_lockdown(self, enabled: bool) -> SystemSettings:
        with self._data_lock:
            self.system_settings.emergency_lockdown = enabled
            return replace(self.system_settings)
