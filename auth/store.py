"""
auth/store.py -- Credential store adapter over interchangeable schema layouts.

Pattern: Repository + Strategy. CredentialStore is the repository the service
talks to; the strategies in auth/layouts.py know the physical shapes. The
store walks them in order:

    FOUND           -> stop and return
    NOT_APPLICABLE  -> next layout
    STORE_ERROR     -> stop and raise StorageUnavailable

and only reports "not found" after every layout is exhausted. A database
failure never falls through to a lower-priority layout: that layout may hold
a stale hash (a legacy users column left behind after a password change), and
a dead database must not look like a wrong password either.

Writes follow the same rule. persist_password_hash() stops at the first
STORE_ERROR and reports failure rather than writing the hash somewhere the
read path would not look first.

Schema detection happens once. The SchemaSnapshot is built lazily on first
use and rebuilt only after this store runs DDL itself (create_schema) or on
an explicit refresh_schema(). Row-level fallback across layouts still runs
on every call, so a database holding users in several layouts at once keeps
resolving all of them.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Email uniqueness is case-insensitive: a pre-check in the service plus the
  unique lower(email) index on the canonical users table.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError

from auth.errors import Conflict, SignupFailed, StorageUnavailable
from auth.layouts import (
    CREDENTIALS_PROVIDER,
    PASSWORD_WRITE_LAYOUTS,
    READ_LAYOUTS,
    USER_INSERT_LAYOUTS,
    CredentialLayout,
    LayoutResult,
    LayoutStatus,
    LookupKey,
    PasswordWriteLayout,
    UserInsertLayout,
)
from auth.models import DEFAULT_ROLE, CredentialRecord, User
from auth.schema import ACCOUNTS, USERS, SchemaSnapshot, build_tables

logger = logging.getLogger("tradeauth.store")

ARGON2ID = "argon2id"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CredentialStore:
    """Resolve and persist users and credentials across schema layouts.

    Usage:
        engine = create_auth_engine("sqlite:///tradeauth.db")
        store = CredentialStore(engine)
        user_id = store.create_user("a@x.com", "A", "USA")
        store.persist_password_hash(user_id, verifier.hash("Secret1!"))
        record = store.resolve_credentials("A@X.com")

    create_schema=False leaves the database untouched (no canonical tables
    are created); tests use it to exercise a single legacy layout in isolation.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        schema: str | None = None,
        create_schema: bool = True,
        read_layouts: Sequence[CredentialLayout] = READ_LAYOUTS,
        insert_layouts: Sequence[UserInsertLayout] = USER_INSERT_LAYOUTS,
        write_layouts: Sequence[PasswordWriteLayout] = PASSWORD_WRITE_LAYOUTS,
    ) -> None:
        self.engine = engine
        self.db_schema = schema
        self.tables = build_tables(schema)
        self._read_layouts = tuple(read_layouts)
        self._insert_layouts = tuple(insert_layouts)
        self._write_layouts = tuple(write_layouts)
        self._snapshot: SchemaSnapshot | None = None
        self._snapshot_lock = threading.Lock()
        if create_schema:
            self.create_schema()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def create_schema(self) -> None:
        """Create any missing canonical table. Existing tables are left as-is."""
        self.tables.metadata.create_all(self.engine, checkfirst=True)
        self.refresh_schema()

    def refresh_schema(self) -> SchemaSnapshot:
        with self._snapshot_lock:
            try:
                self._snapshot = SchemaSnapshot.inspect(self.engine, self.db_schema)
            except DBAPIError as exc:
                raise StorageUnavailable("Credential store unavailable") from exc
            logger.debug("Schema snapshot: %r", self._snapshot)
            return self._snapshot

    @property
    def snapshot(self) -> SchemaSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            snapshot = self.refresh_schema()
        return snapshot

    # ------------------------------------------------------------------
    # Credential resolution
    # ------------------------------------------------------------------

    def resolve_credentials(self, email: str) -> CredentialRecord | None:
        """Return the credential for email (trimmed, case-insensitive) or None.

        Raises StorageUnavailable as soon as a layout fails with a database
        error, before any lower-priority layout is consulted.
        """
        return self._resolve(LookupKey(email=email))

    def resolve_credentials_by_user_id(self, user_id: str) -> CredentialRecord | None:
        return self._resolve(LookupKey(user_id=user_id))

    def diagnose(self, key: LookupKey) -> list[LayoutResult]:
        """Run every read layout for key and return all results (diagnostics)."""
        snapshot = self.snapshot
        return [layout.lookup(self.engine, snapshot, key) for layout in self._read_layouts]

    def _resolve(self, key: LookupKey) -> CredentialRecord | None:
        snapshot = self.snapshot
        for layout in self._read_layouts:
            result = layout.lookup(self.engine, snapshot, key)
            if result.status is LayoutStatus.FOUND:
                logger.debug("Credentials resolved via %s", result.layout)
                return result.record
            if result.status is LayoutStatus.STORE_ERROR:
                # Lower layouts may hold a superseded hash.
                logger.warning("Credential layout %s failed: %s", result.layout, result.reason)
                raise StorageUnavailable("Credential store unavailable")
        return None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def email_exists(self, email: str) -> bool:
        """Case-insensitive check against the users table."""
        return self.find_user_id(email, include_accounts=False) is not None

    def find_user_id(self, email: str, include_accounts: bool = True) -> str | None:
        """Resolve a user id by email from users, then from the accounts mapping."""
        snapshot = self.snapshot
        needle = email.strip().lower()
        try:
            with self.engine.connect() as conn:
                if snapshot.has(USERS, "id", "email"):
                    u = snapshot.table(USERS, "id", "email")
                    row = conn.execute(
                        select(u.c.id).where(func.lower(func.trim(u.c.email)) == needle).limit(1)
                    ).first()
                    if row is not None:
                        return str(row[0])
                if include_accounts and snapshot.has(ACCOUNTS, "user_id", "provider", "provider_account_id"):
                    a = snapshot.table(ACCOUNTS, "user_id", "provider", "provider_account_id")
                    row = conn.execute(
                        select(a.c.user_id)
                        .where(a.c.provider == CREDENTIALS_PROVIDER)
                        .where(func.lower(func.trim(a.c.provider_account_id)) == needle)
                        .limit(1)
                    ).first()
                    if row is not None:
                        return str(row[0])
        except DBAPIError as exc:
            raise StorageUnavailable("Credential store unavailable") from exc
        return None

    def create_user(self, email: str, name: str | None, country: str | None, role: str = DEFAULT_ROLE) -> str:
        """Insert a users row with the richest column set the schema supports.

        Returns the new user id (UUID4 string).

        Raises:
            Conflict: the email is already taken (store-level rejection).
            SignupFailed: no insert layout matched this schema.
            StorageUnavailable: a layout failed with a database error.
        """
        user_id = str(uuid.uuid4())
        values = {
            "id": user_id,
            "email": email.strip(),
            "name": name,
            "country": country,
            "role": role,
            "created_at": _now_iso(),
        }
        snapshot = self.snapshot
        for layout in self._insert_layouts:
            try:
                result = layout.insert(self.engine, snapshot, values)
            except IntegrityError as exc:
                if self.email_exists(email):
                    raise Conflict("Email already registered") from exc
                logger.info("Insert layout %s rejected by a constraint, trying next", layout.name)
                continue
            if result.status is LayoutStatus.FOUND:
                logger.info("Created user %s via %s", user_id, layout.name)
                return user_id
            if result.status is LayoutStatus.STORE_ERROR:
                logger.warning("Insert layout %s failed: %s", layout.name, result.reason)
                raise StorageUnavailable("Credential store unavailable")
        logger.warning("Signup: no users-table layout accepted the insert")
        raise SignupFailed("Signup failed")

    def persist_password_hash(self, user_id: str, password_hash: str, algorithm: str = ARGON2ID) -> bool:
        """Best-effort write of a password hash. Returns True if a layout took it.

        Never raises for a schema mismatch: the caller's request (signup,
        reset) must not fail because no password column could be found.
        A database error on a layout stops the walk and returns False; the
        hash is never written to a layout the read path ranks lower.
        """
        snapshot = self.snapshot
        for layout in self._write_layouts:
            result = layout.write(self.engine, snapshot, user_id, password_hash, algorithm)
            if result.status is LayoutStatus.FOUND:
                logger.debug("Password hash for %s persisted via %s", user_id, result.layout)
                return True
            if result.status is LayoutStatus.STORE_ERROR:
                logger.warning("Password write layout %s failed: %s", result.layout, result.reason)
                return False
        logger.warning("No password layout accepted the hash for user %s", user_id)
        return False

    def get_role(self, user_id: str) -> str | None:
        """Role for user_id, "user" when the schema has no role column, None if no such user."""
        snapshot = self.snapshot
        if not snapshot.has(USERS, "id"):
            return None
        u = snapshot.table(USERS, "id", "role")
        role_col = u.c.role if "role" in u.c else u.c.id
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(role_col).where(u.c.id == user_id).limit(1)).first()
        except DBAPIError as exc:
            raise StorageUnavailable("Credential store unavailable") from exc
        if row is None:
            return None
        if "role" not in u.c:
            return DEFAULT_ROLE
        return row[0] or DEFAULT_ROLE

    def get_profile(self, user_id: str) -> User | None:
        snapshot = self.snapshot
        if not snapshot.has(USERS, "id"):
            return None
        u = snapshot.table(USERS, "id", "email", "name", "country", "role")
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(u).where(u.c.id == user_id).limit(1)).mappings().first()
        except DBAPIError as exc:
            raise StorageUnavailable("Credential store unavailable") from exc
        if row is None:
            return None
        return User(
            id=str(row["id"]),
            email=row.get("email"),
            name=row.get("name"),
            country=row.get("country"),
            role=row.get("role") or DEFAULT_ROLE,
        )

    def update_profile(self, user_id: str, name: str | None = None, email: str | None = None) -> int:
        """Update name and/or email. Returns the number of fields written.

        Raises Conflict if another user already holds the new email. A name
        update is silently skipped on schemas without a name column.
        """
        snapshot = self.snapshot
        if not snapshot.has(USERS, "id", "email"):
            return 0
        u = snapshot.table(USERS, "id", "email", "name")
        updated = 0
        try:
            with self.engine.begin() as conn:
                if email and email.strip():
                    new_email = email.strip()
                    taken = conn.execute(
                        select(func.count())
                        .select_from(u)
                        .where(func.lower(u.c.email) == new_email.lower())
                        .where(u.c.id != user_id)
                    ).scalar()
                    if taken:
                        raise Conflict("Email already in use")
                    updated += conn.execute(u.update().where(u.c.id == user_id).values(email=new_email)).rowcount
                if name and name.strip() and "name" in u.c:
                    updated += conn.execute(u.update().where(u.c.id == user_id).values(name=name.strip())).rowcount
        except IntegrityError as exc:
            raise Conflict("Email already in use") from exc
        except DBAPIError as exc:
            raise StorageUnavailable("Credential store unavailable") from exc
        return updated

    def ping(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except DBAPIError:
            logger.warning("Credential store ping failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()
