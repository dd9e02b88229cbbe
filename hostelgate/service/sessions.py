from __future__ import annotations

import json
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple, Union

from hostelgate.config import Settings
from hostelgate.logging import get_logger, session_fingerprint
from hostelgate.storage.kv import KeyValueStore
from hostelgate.storage.models import Session

logger = get_logger(__name__)

TOKEN_BYTES = 32


def session_key(session_id: str) -> str:
    return f"sess:{session_id}"


def user_sessions_key(user_id: str) -> str:
    # Kept outside the "user:" namespace so user-cache invalidation cannot drop it
    return f"sessions:user:{user_id}"


@dataclass(frozen=True)
class SessionRef:
    """Descriptor form accepted by ``SessionService.delete_session``."""

    session_id: Optional[str]
    user_id: Optional[str] = None


class SessionService:
    """Tab-scoped sessions stored as JSON records with store-enforced expiry.

    Lifecycle: created on login, touched on every authenticated request, and
    gone on logout, revocation, or expiry. Expiry is never swept here; the
    store simply stops returning the key. Every session also has an entry in
    a per-user sorted set scored by last-seen time, which may briefly outlive
    the session and is repaired when listed.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock

    @property
    def idle_ttl(self) -> int:
        return self.settings.session_ttl_idle_seconds

    @property
    def absolute_ttl(self) -> int:
        return self.settings.session_ttl_absolute_seconds

    def _now(self) -> int:
        return int(self.clock())

    def cookie_name(self, tab_id: Optional[str]) -> str:
        base = self.settings.session_cookie_name
        return f"{base}_{tab_id}" if tab_id else base

    def csrf_cookie_name(self, tab_id: Optional[str]) -> str:
        return f"{self.settings.csrf_cookie_name}_{tab_id or 'default'}"

    def absolute_deadline(self, session: Session) -> int:
        return session.created_at + self.absolute_ttl

    async def create_session(
        self,
        user_id: str,
        roles: Union[str, Iterable[str]],
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        device: Optional[str] = None,
        tab_id: Optional[str] = None,
    ) -> Tuple[str, Session]:
        session_id = secrets.token_hex(TOKEN_BYTES)
        ts = self._now()
        session = Session(
            id=session_id,
            user_id=str(user_id),
            roles=[roles] if isinstance(roles, str) else list(roles),
            created_at=ts,
            last_seen=ts,
            csrf_token=secrets.token_hex(TOKEN_BYTES),
            ip=ip,
            user_agent=user_agent,
            device=device,
            tab_id=tab_id or None,
        )
        await self.store.set(
            session_key(session_id), json.dumps(session.to_payload()), ex=self.absolute_ttl
        )
        await self.store.zadd(user_sessions_key(session.user_id), session_id, ts)
        logger.info(
            "session_created",
            session=session_fingerprint(session_id),
            user_id=session.user_id,
            role=session.role,
            tab_id=session.tab_id,
        )
        if self.settings.session_cap > 0:
            await self._enforce_cap(session.user_id, keep=session_id)
        return session_id, session

    async def _enforce_cap(self, user_id: str, *, keep: str) -> List[str]:
        """Evict least-recently-seen sessions beyond the per-user cap."""
        live = await self.list_user_sessions(user_id)
        overflow = len(live) - self.settings.session_cap
        if overflow <= 0:
            return []
        # Oldest first; the session just created is never a candidate
        candidates = [s for s in reversed(live) if s.id != keep]
        evicted = [s.id for s in candidates[:overflow]]
        for sid in evicted:
            await self.delete_session(sid, user_id=user_id)
        logger.info(
            "session_cap_evicted",
            user_id=user_id,
            cap=self.settings.session_cap,
            evicted=[session_fingerprint(sid) for sid in evicted],
        )
        return evicted

    async def get_session(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        raw = await self.store.get(session_key(session_id))
        if raw is None:
            return None
        try:
            return Session.from_payload(session_id, json.loads(raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "session_record_corrupt",
                session=session_fingerprint(session_id),
                error=str(exc),
            )
            return None

    async def touch_session(self, session_id: str, user_id: Optional[str] = None) -> Optional[Session]:
        """Slide the idle window without passing the absolute deadline.

        The new TTL is ``min(idle TTL, time left until created_at + absolute
        TTL)``, so repeated touches can never extend a session beyond its
        absolute lifetime. Returns ``None`` once that deadline is reached.

        The rewrite only lands if the record still exists, so a logout or
        revocation that completes between the read and the write wins.
        """
        session = await self.get_session(session_id)
        if session is None:
            return None
        now = self.clock()
        remaining_ms = int((self.absolute_deadline(session) - now) * 1000)
        new_ttl_ms = min(self.idle_ttl * 1000, remaining_ms)
        if new_ttl_ms <= 0:
            return None
        session.last_seen = int(now)
        written = await self.store.set(
            session_key(session_id),
            json.dumps(session.to_payload()),
            px=new_ttl_ms,
            xx=True,
        )
        if not written:
            logger.info(
                "session_touch_lost",
                session=session_fingerprint(session_id),
                user_id=session.user_id,
            )
            return None
        await self.store.zadd(
            user_sessions_key(user_id or session.user_id), session_id, session.last_seen
        )
        return session

    async def delete_session(
        self,
        target: Union[str, SessionRef, None],
        *,
        user_id: Optional[str] = None,
    ) -> None:
        """Delete a session given its id or a ``SessionRef``.

        The owner is looked up from the record when not supplied so the
        per-user index entry can be removed as well.
        """
        if isinstance(target, SessionRef):
            session_id = target.session_id
            user_id = user_id or target.user_id
        else:
            session_id = target
        if not session_id:
            return

        if not user_id:
            session = await self.get_session(session_id)
            if session is not None:
                user_id = session.user_id

        await self.store.delete(session_key(session_id))
        if user_id:
            await self.store.zrem(user_sessions_key(user_id), session_id)
        logger.info(
            "session_deleted", session=session_fingerprint(session_id), user_id=user_id
        )

    async def list_user_sessions(self, user_id: str) -> List[Session]:
        """Live sessions of a user, most recently seen first.

        Index entries whose session has expired are pruned as a side effect.
        """
        index_key = user_sessions_key(user_id)
        ids = await self.store.zrange(index_key)
        results: List[Session] = []
        dangling: List[str] = []
        for sid in ids:
            session = await self.get_session(sid)
            if session is None:
                dangling.append(sid)
            else:
                results.append(session)
        if dangling:
            await self.store.zrem(index_key, *dangling)
            logger.debug("session_index_pruned", user_id=user_id, pruned=len(dangling))
        results.sort(key=lambda s: s.last_seen, reverse=True)
        return results

    async def revoke_user_sessions(
        self, user_id: str, *, except_session_id: Optional[str] = None
    ) -> int:
        """Delete every session of a user, optionally sparing one."""
        revoked = 0
        for sid in await self.store.zrange(user_sessions_key(user_id)):
            if except_session_id and sid == except_session_id:
                continue
            await self.delete_session(sid, user_id=user_id)
            revoked += 1
        if revoked:
            logger.info("user_sessions_revoked", user_id=user_id, revoked=revoked)
        return revoked
