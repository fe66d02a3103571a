"""
auth/sessions.py -- Refresh-session persistence with single-use rotation.

A refresh session is an opaque random id mapped to (user_id, expires_at).
Lifecycle:

    Created --refresh--> Rotated (old Deleted, new Created)
    Created --logout---> Deleted
    Created --use after TTL--> Expired -> Deleted (+ Unauthorized)

Rotation is delete-then-create, ordered but not wrapped in one transaction.
A crash between the two leaves the old id consumed and no new id issued: the
client has to log in again. That fails closed; the reverse order could leave
two live ids for one refresh.

Two concurrent refreshes with the same id race on the delete; the loser sees
"Session not found". That is replay prevention working, not a bug.

expires_at is stored as naive UTC (what SQLite and MySQL DATETIME hold) and
converted back to an aware datetime on read.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError

from auth.errors import StorageUnavailable, Unauthorized
from auth.models import DEFAULT_ROLE, Session
from auth.schema import AuthTables, build_tables
from auth.tokens import generate_session_id

logger = logging.getLogger("tradeauth.sessions")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(value) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionStore:
    """Repository for refresh sessions.

    role_lookup maps a user id to its current role (None when the user no
    longer exists, which makes the session unusable). Without one every
    session reports the default role.

    Usage:
        sessions = SessionStore(engine, role_lookup=store.get_role)
        sid = sessions.create(user_id, ttl_seconds=604800)
        session, new_sid = sessions.rotate(sid, ttl_seconds=604800)
        sessions.delete(new_sid)
    """

    def __init__(
        self,
        engine: Engine,
        tables: AuthTables | None = None,
        *,
        role_lookup: Callable[[str], str | None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
        create_table: bool = True,
    ) -> None:
        self.engine = engine
        self._tables = tables or build_tables()
        self._sessions = self._tables.sessions
        self._role_lookup = role_lookup
        self._clock = clock
        if create_table:
            self._tables.metadata.create_all(engine, tables=[self._sessions], checkfirst=True)

    def create(self, user_id: str, ttl_seconds: int) -> str:
        """Persist a new session for user_id and return its id."""
        session_id = generate_session_id()
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    self._sessions.insert().values(id=session_id, user_id=user_id, expires_at=_to_db(expires_at))
                )
        except DBAPIError as exc:
            raise StorageUnavailable("Session store unavailable") from exc
        return session_id

    def lookup(self, session_id: str) -> Session | None:
        """Return the session, or None if absent or its user no longer exists.

        Expired sessions are returned as-is; require_active() decides.
        """
        if not session_id:
            return None
        s = self._sessions
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(s).where(s.c.id == session_id)).mappings().first()
        except DBAPIError as exc:
            raise StorageUnavailable("Session store unavailable") from exc
        if row is None:
            return None
        role = DEFAULT_ROLE
        if self._role_lookup is not None:
            role = self._role_lookup(row["user_id"])
            if role is None:
                logger.info("Session %s... references a missing user", session_id[:8])
                return None
        return Session(
            id=row["id"],
            user_id=row["user_id"],
            expires_at=_from_db(row["expires_at"]),
            role=role,
        )

    def delete(self, session_id: str) -> None:
        """Delete a session. Deleting an absent id is not an error."""
        if not session_id:
            return
        try:
            with self.engine.begin() as conn:
                conn.execute(self._sessions.delete().where(self._sessions.c.id == session_id))
        except DBAPIError as exc:
            raise StorageUnavailable("Session store unavailable") from exc

    def require_active(self, session_id: str) -> Session:
        """Return the live session or raise Unauthorized.

        An expired session is deleted before the error is raised, so its id
        is dead even if the caller retries.
        """
        session = self.lookup(session_id)
        if session is None:
            raise Unauthorized("Session not found")
        if session.is_expired(self._clock()):
            self.delete(session_id)
            raise Unauthorized("Session expired")
        return session

    def rotate(self, session_id: str, ttl_seconds: int) -> tuple[Session, str]:
        """Consume session_id and issue a replacement with a fresh TTL.

        Returns (consumed session, new session id).
        """
        session = self.require_active(session_id)
        self.delete(session_id)
        return session, self.create(session.user_id, ttl_seconds)

    def purge_expired(self) -> int:
        """Delete every expired session. Returns the number of rows removed."""
        cutoff = _to_db(self._clock())
        try:
            with self.engine.begin() as conn:
                result = conn.execute(self._sessions.delete().where(self._sessions.c.expires_at <= cutoff))
        except DBAPIError as exc:
            raise StorageUnavailable("Session store unavailable") from exc
        return result.rowcount
