"""
auth/schema.py -- Canonical auth tables, engine factory, and schema snapshot.

The canonical layout is what a fresh deployment gets:

    users(id, email, name, country, role, created_at)
    user_passwords(user_id, password_hash, algorithm)
    sessions(id, user_id, expires_at)

Older deployments hold users and credentials in other shapes (an accounts
table keyed by provider, password columns directly on users, a capitalised
Users table). Those tables are never altered. Instead SchemaSnapshot records
which tables and columns actually exist, and the layouts in auth/layouts.py
decide from it whether they apply.

Email uniqueness is case-insensitive at the store level through a unique
functional index on lower(email).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    Text,
    column,
    create_engine,
    event,
    func,
    inspect,
    table,
)
from sqlalchemy.engine import Engine
from sqlalchemy.sql.expression import TableClause

USERS = "users"
USER_PASSWORDS = "user_passwords"
ACCOUNTS = "accounts"
SESSIONS = "sessions"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_auth_engine(db_url: str) -> Engine:
    """Create the shared engine for the credential and session stores."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Canonical tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthTables:
    metadata: MetaData
    users: Table
    user_passwords: Table
    sessions: Table


def build_tables(schema: str | None = None) -> AuthTables:
    """Return the canonical table set, qualified with schema when given."""
    metadata = MetaData(schema=schema)
    users = Table(
        USERS,
        metadata,
        Column("id", String(64), primary_key=True),
        Column("email", String(255), nullable=False),
        Column("name", String(255)),
        Column("country", String(100)),
        Column("role", String(30), nullable=False, server_default="user"),
        Column("created_at", String(32)),
    )
    Index("uq_users_email_lower", func.lower(users.c.email), unique=True)
    user_passwords = Table(
        USER_PASSWORDS,
        metadata,
        Column("user_id", String(64), primary_key=True),
        Column("password_hash", Text, nullable=False),
        Column("algorithm", String(32), nullable=False),
    )
    sessions = Table(
        SESSIONS,
        metadata,
        Column("id", String(64), primary_key=True),
        Column("user_id", String(64), nullable=False, index=True),
        Column("expires_at", DateTime, nullable=False),
    )
    return AuthTables(metadata=metadata, users=users, user_passwords=user_passwords, sessions=sessions)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class SchemaSnapshot:
    """Which tables and columns exist, keyed case-insensitively.

    Built once from SQLAlchemy's inspector and treated as read-only. The
    credential store replaces it wholesale after running DDL.
    """

    def __init__(self, tables: dict[str, tuple[str, frozenset[str]]], schema: str | None = None) -> None:
        self._tables = tables
        self.schema = schema

    @classmethod
    def inspect(cls, engine: Engine, schema: str | None = None) -> SchemaSnapshot:
        inspector = inspect(engine)
        tables: dict[str, tuple[str, frozenset[str]]] = {}
        for name in inspector.get_table_names(schema=schema):
            cols = frozenset(c["name"].lower() for c in inspector.get_columns(name, schema=schema))
            tables.setdefault(name.lower(), (name, cols))
        return cls(tables, schema)

    def has_table(self, name: str) -> bool:
        return name.lower() in self._tables

    def columns(self, name: str) -> frozenset[str]:
        entry = self._tables.get(name.lower())
        return entry[1] if entry else frozenset()

    def has(self, name: str, *cols: str) -> bool:
        """True when table name exists and carries every column in cols."""
        if not self.has_table(name):
            return False
        return set(cols) <= self.columns(name)

    def table(self, name: str, *cols: str) -> TableClause:
        """A lightweight table clause using the live table name.

        Only columns that exist are attached, so callers must check has()
        before referring to optional columns.
        """
        actual, existing = self._tables[name.lower()]
        return table(actual, *(column(c) for c in cols if c in existing), schema=self.schema)

    def __repr__(self) -> str:
        return f"SchemaSnapshot(tables={sorted(self._tables)})"
