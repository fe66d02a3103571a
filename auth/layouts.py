"""
auth/layouts.py -- Schema layout strategies for the credential store.

Each deployment of the platform left users and password hashes in a
slightly different physical shape. Rather than a chain of try/except blocks,
every known shape is an explicit strategy object, and the store walks an
ordered list of them:

  Read layouts (resolve a CredentialRecord by email or by user id):
    1. JoinedPasswordLayout        users JOIN user_passwords
    2. ProviderAccountJoinedLayout accounts(provider='credentials') JOIN user_passwords JOIN users
    3. ProviderAccountInlineLayout accounts(password_hash, password_algorithm) JOIN users
    4. UserColumnLayout            password columns directly on users
                                   (password_hash, hashed_password, password)

  Insert layouts (create a user row): column sets from richest to poorest.

  Write layouts (persist a password hash): user_passwords upsert, accounts
  inline update, users column update.

Every attempt returns a tagged LayoutResult:

  FOUND           the layout matched (row resolved / row written)
  NOT_APPLICABLE  the shape is absent, the database rejected the statement as
                  malformed for this schema, or this shape holds no row for
                  the key -- the caller moves on to the next layout
  STORE_ERROR     the database itself failed (connection lost, locked, ...)

Applicability is decided from a SchemaSnapshot first, so a lookup against a
shape that does not exist never touches the database.

Security: all statements are SQLAlchemy Core constructs with bound
parameters. Table and column names come from the fixed lists below, never
from input.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from sqlalchemy import func, literal, null, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, ProgrammingError

from auth.models import DEFAULT_ROLE, CredentialRecord
from auth.schema import ACCOUNTS, USER_PASSWORDS, USERS, SchemaSnapshot

CREDENTIALS_PROVIDER = "credentials"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class LayoutStatus(str, Enum):
    FOUND = "found"
    NOT_APPLICABLE = "not_applicable"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class LayoutResult:
    status: LayoutStatus
    layout: str
    record: Optional[CredentialRecord] = None
    reason: str = ""

    @classmethod
    def found(cls, layout: str, record: Optional[CredentialRecord] = None) -> LayoutResult:
        return cls(LayoutStatus.FOUND, layout, record=record)

    @classmethod
    def not_applicable(cls, layout: str, reason: str) -> LayoutResult:
        return cls(LayoutStatus.NOT_APPLICABLE, layout, reason=reason)

    @classmethod
    def store_error(cls, layout: str, reason: str) -> LayoutResult:
        return cls(LayoutStatus.STORE_ERROR, layout, reason=reason)


@dataclass(frozen=True)
class LookupKey:
    """Exactly one of email / user_id. Email matching is trim + case-insensitive."""

    email: Optional[str] = None
    user_id: Optional[str] = None

    def clause(self, email_col, id_col):
        if self.email is not None:
            return func.lower(func.trim(email_col)) == self.email.strip().lower()
        return id_col == self.user_id


def _role_of(users) -> Any:
    if "role" in users.c:
        return users.c.role.label("role")
    return literal(DEFAULT_ROLE).label("role")


def _column_or_null(tbl, name: Optional[str], label: str) -> Any:
    if name and name in tbl.c:
        return tbl.c[name].label(label)
    return null().label(label)


# ---------------------------------------------------------------------------
# Read layouts
# ---------------------------------------------------------------------------


class CredentialLayout:
    """Base read strategy. Subclasses define applies() and query()."""

    name = "base"

    def applies(self, schema: SchemaSnapshot) -> bool:
        raise NotImplementedError

    def query(self, schema: SchemaSnapshot, key: LookupKey):
        raise NotImplementedError

    def lookup(self, engine: Engine, schema: SchemaSnapshot, key: LookupKey) -> LayoutResult:
        if not self.applies(schema):
            return LayoutResult.not_applicable(self.name, "shape absent")
        try:
            # One connection per lookup: a failed statement must not poison
            # the transaction used by the next layout.
            with engine.connect() as conn:
                row = conn.execute(self.query(schema, key)).mappings().first()
        except ProgrammingError as exc:
            return LayoutResult.not_applicable(self.name, f"statement rejected: {exc.orig}")
        except DBAPIError as exc:
            return LayoutResult.store_error(self.name, str(exc.orig))
        if row is None:
            return LayoutResult.not_applicable(self.name, "no matching row")
        record = CredentialRecord(
            user_id=str(row["user_id"]),
            role=row["role"] or DEFAULT_ROLE,
            password_hash=row["password_hash"],
            algorithm=row["algorithm"],
            layout=self.name,
        )
        return LayoutResult.found(self.name, record)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class JoinedPasswordLayout(CredentialLayout):
    """Canonical shape: users JOIN user_passwords ON user_id."""

    name = "users+user_passwords"

    def applies(self, schema: SchemaSnapshot) -> bool:
        return schema.has(USERS, "id", "email") and schema.has(USER_PASSWORDS, "user_id", "password_hash")

    def query(self, schema: SchemaSnapshot, key: LookupKey):
        u = schema.table(USERS, "id", "email", "role")
        p = schema.table(USER_PASSWORDS, "user_id", "password_hash", "algorithm")
        return (
            select(
                u.c.id.label("user_id"),
                _role_of(u),
                p.c.password_hash.label("password_hash"),
                _column_or_null(p, "algorithm", "algorithm"),
            )
            .select_from(u.join(p, p.c.user_id == u.c.id))
            .where(key.clause(u.c.email, u.c.id))
            .limit(1)
        )


class ProviderAccountJoinedLayout(CredentialLayout):
    """accounts(provider='credentials', provider_account_id=email) -> user_passwords."""

    name = "accounts+user_passwords"

    def applies(self, schema: SchemaSnapshot) -> bool:
        return (
            schema.has(ACCOUNTS, "user_id", "provider", "provider_account_id")
            and schema.has(USER_PASSWORDS, "user_id", "password_hash")
            and schema.has(USERS, "id")
        )

    def query(self, schema: SchemaSnapshot, key: LookupKey):
        a = schema.table(ACCOUNTS, "user_id", "provider", "provider_account_id")
        p = schema.table(USER_PASSWORDS, "user_id", "password_hash", "algorithm")
        u = schema.table(USERS, "id", "role")
        return (
            select(
                a.c.user_id.label("user_id"),
                _role_of(u),
                p.c.password_hash.label("password_hash"),
                _column_or_null(p, "algorithm", "algorithm"),
            )
            .select_from(a.join(p, p.c.user_id == a.c.user_id).join(u, u.c.id == a.c.user_id))
            .where(a.c.provider == CREDENTIALS_PROVIDER)
            .where(key.clause(a.c.provider_account_id, a.c.user_id))
            .limit(1)
        )


class ProviderAccountInlineLayout(CredentialLayout):
    """Oldest shape: the hash lives on the accounts row itself."""

    name = "accounts(inline)"

    def applies(self, schema: SchemaSnapshot) -> bool:
        return schema.has(ACCOUNTS, "user_id", "provider", "provider_account_id", "password_hash") and schema.has(
            USERS, "id"
        )

    def query(self, schema: SchemaSnapshot, key: LookupKey):
        a = schema.table(ACCOUNTS, "user_id", "provider", "provider_account_id", "password_hash", "password_algorithm")
        u = schema.table(USERS, "id", "role")
        return (
            select(
                a.c.user_id.label("user_id"),
                _role_of(u),
                a.c.password_hash.label("password_hash"),
                _column_or_null(a, "password_algorithm", "algorithm"),
            )
            .select_from(a.join(u, u.c.id == a.c.user_id))
            .where(a.c.provider == CREDENTIALS_PROVIDER)
            .where(key.clause(a.c.provider_account_id, a.c.user_id))
            .limit(1)
        )


class UserColumnLayout(CredentialLayout):
    """Password stored directly on users under one of several column names."""

    def __init__(self, hash_column: str, algorithm_column: Optional[str] = None) -> None:
        self.hash_column = hash_column
        self.algorithm_column = algorithm_column
        self.name = f"users.{hash_column}"

    def applies(self, schema: SchemaSnapshot) -> bool:
        return schema.has(USERS, "id", "email", self.hash_column)

    def query(self, schema: SchemaSnapshot, key: LookupKey):
        cols = ["id", "email", "role", self.hash_column]
        if self.algorithm_column:
            cols.append(self.algorithm_column)
        u = schema.table(USERS, *cols)
        return (
            select(
                u.c.id.label("user_id"),
                _role_of(u),
                u.c[self.hash_column].label("password_hash"),
                _column_or_null(u, self.algorithm_column, "algorithm"),
            )
            .where(key.clause(u.c.email, u.c.id))
            .limit(1)
        )


READ_LAYOUTS: tuple[CredentialLayout, ...] = (
    JoinedPasswordLayout(),
    ProviderAccountJoinedLayout(),
    ProviderAccountInlineLayout(),
    UserColumnLayout("password_hash", "password_algorithm"),
    UserColumnLayout("hashed_password"),
    UserColumnLayout("password"),
)


# ---------------------------------------------------------------------------
# Insert layouts
# ---------------------------------------------------------------------------


class UserInsertLayout:
    """Insert a users row using exactly this column set.

    IntegrityError is not classified here: the store needs to tell a
    duplicate email (Conflict) from some other NOT NULL / CHECK rejection
    (try the next shape), and only it can re-query.
    """

    def __init__(self, *columns: str) -> None:
        self.columns = columns
        self.name = f"users({', '.join(columns)})"

    def applies(self, schema: SchemaSnapshot) -> bool:
        return schema.has(USERS, *self.columns)

    def insert(self, engine: Engine, schema: SchemaSnapshot, values: dict) -> LayoutResult:
        if not self.applies(schema):
            return LayoutResult.not_applicable(self.name, "shape absent")
        u = schema.table(USERS, *self.columns)
        try:
            with engine.begin() as conn:
                conn.execute(u.insert().values({c: values.get(c) for c in self.columns}))
        except IntegrityError:
            raise
        except ProgrammingError as exc:
            return LayoutResult.not_applicable(self.name, f"statement rejected: {exc.orig}")
        except DBAPIError as exc:
            return LayoutResult.store_error(self.name, str(exc.orig))
        return LayoutResult.found(self.name)


USER_INSERT_LAYOUTS: tuple[UserInsertLayout, ...] = (
    UserInsertLayout("id", "email", "name", "country", "role", "created_at"),
    UserInsertLayout("id", "email", "name", "country", "role"),
    UserInsertLayout("id", "email", "name", "role"),
    UserInsertLayout("id", "email", "role"),
    UserInsertLayout("id", "email", "name"),
    UserInsertLayout("id", "email"),
)


# ---------------------------------------------------------------------------
# Password write layouts
# ---------------------------------------------------------------------------


class PasswordWriteLayout:
    name = "base"

    def applies(self, schema: SchemaSnapshot) -> bool:
        raise NotImplementedError

    def _write(self, conn, schema: SchemaSnapshot, user_id: str, password_hash: str, algorithm: str) -> bool:
        raise NotImplementedError

    def write(
        self, engine: Engine, schema: SchemaSnapshot, user_id: str, password_hash: str, algorithm: str
    ) -> LayoutResult:
        if not self.applies(schema):
            return LayoutResult.not_applicable(self.name, "shape absent")
        try:
            with engine.begin() as conn:
                written = self._write(conn, schema, user_id, password_hash, algorithm)
        except (ProgrammingError, IntegrityError) as exc:
            return LayoutResult.not_applicable(self.name, f"statement rejected: {exc.orig}")
        except DBAPIError as exc:
            return LayoutResult.store_error(self.name, str(exc.orig))
        if not written:
            return LayoutResult.not_applicable(self.name, "no row for user")
        return LayoutResult.found(self.name)


class PasswordTableWrite(PasswordWriteLayout):
    """Upsert into user_passwords: UPDATE, then INSERT when nothing matched."""

    name = "user_passwords"

    def applies(self, schema: SchemaSnapshot) -> bool:
        return schema.has(USER_PASSWORDS, "user_id", "password_hash")

    def _write(self, conn, schema, user_id, password_hash, algorithm) -> bool:
        p = schema.table(USER_PASSWORDS, "user_id", "password_hash", "algorithm")
        values = {"password_hash": password_hash}
        if "algorithm" in p.c:
            values["algorithm"] = algorithm
        result = conn.execute(p.update().where(p.c.user_id == user_id).values(values))
        if result.rowcount == 0:
            conn.execute(p.insert().values(user_id=user_id, **values))
        return True


class AccountInlineWrite(PasswordWriteLayout):
    name = "accounts(inline)"

    def applies(self, schema: SchemaSnapshot) -> bool:
        return schema.has(ACCOUNTS, "user_id", "provider", "password_hash")

    def _write(self, conn, schema, user_id, password_hash, algorithm) -> bool:
        a = schema.table(ACCOUNTS, "user_id", "provider", "password_hash", "password_algorithm")
        values = {"password_hash": password_hash}
        if "password_algorithm" in a.c:
            values["password_algorithm"] = algorithm
        result = conn.execute(
            a.update().where(a.c.user_id == user_id).where(a.c.provider == CREDENTIALS_PROVIDER).values(values)
        )
        return result.rowcount > 0


class UserColumnWrite(PasswordWriteLayout):
    def __init__(self, hash_column: str, algorithm_column: Optional[str] = None) -> None:
        self.hash_column = hash_column
        self.algorithm_column = algorithm_column
        self.name = f"users.{hash_column}"

    def applies(self, schema: SchemaSnapshot) -> bool:
        return schema.has(USERS, "id", self.hash_column)

    def _write(self, conn, schema, user_id, password_hash, algorithm) -> bool:
        cols = ["id", self.hash_column]
        if self.algorithm_column:
            cols.append(self.algorithm_column)
        u = schema.table(USERS, *cols)
        values = {self.hash_column: password_hash}
        if self.algorithm_column and self.algorithm_column in u.c:
            values[self.algorithm_column] = algorithm
        result = conn.execute(u.update().where(u.c.id == user_id).values(values))
        return result.rowcount > 0


PASSWORD_WRITE_LAYOUTS: tuple[PasswordWriteLayout, ...] = (
    PasswordTableWrite(),
    AccountInlineWrite(),
    UserColumnWrite("password_hash", "password_algorithm"),
    UserColumnWrite("hashed_password"),
    UserColumnWrite("password"),
)
