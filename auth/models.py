"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
service do the work; these classes own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

DEFAULT_ROLE = "user"


@dataclass(frozen=True)
class AuthConfig:
    """Immutable auth configuration, built once at startup and injected.

    Every auth component receives this value at construction; none of them
    read the environment or a global settings object.
    """

    secret_key: str
    issuer: str = "tariff"
    audience: str = "tariff-web"
    access_ttl_seconds: int = 900
    refresh_ttl_seconds: int = 604800
    allow_plaintext: bool = False
    dev_endpoints: bool = False

    @classmethod
    def from_settings(cls, settings) -> AuthConfig:
        """Build from a core.config.Settings instance (duck-typed)."""
        return cls(
            secret_key=settings.secret_key,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl_seconds=settings.access_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_ttl_seconds,
            allow_plaintext=settings.allow_plaintext,
            dev_endpoints=settings.dev_endpoints,
        )


@dataclass
class User:
    """A platform user. name/country may be None on legacy schemas."""

    id: str
    email: str | None = None
    name: str | None = None
    country: str | None = None
    role: str = DEFAULT_ROLE


@dataclass(frozen=True)
class CredentialRecord:
    """What a credential layout resolves for one user.

    algorithm is the stored tag ("argon2id", "bcrypt", ...) or None when the
    layout has no algorithm column.
    """

    user_id: str
    role: str
    password_hash: str | None
    algorithm: str | None = None
    layout: str = ""


@dataclass(frozen=True)
class Session:
    """A refresh session row. role is filled in by the store's role lookup."""

    id: str
    user_id: str
    expires_at: datetime
    role: str = DEFAULT_ROLE

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class ParsedToken:
    user_id: str
    role: str


@dataclass(frozen=True)
class TokenBundle:
    """Result of issue_tokens(): shared by login and refresh.

    refresh_token is the new session id the HTTP layer stores as a cookie.
    """

    access_token: str
    refresh_token: str
    refresh_ttl_seconds: int
    role: str


@dataclass(frozen=True)
class PasswordChangeResult:
    updated: bool
    message: str = ""


@dataclass(frozen=True)
class VerifyReport:
    """Diagnostic output of a dev-only credential check."""

    matched: bool
    mode: str
    algorithm: str | None = None
    hash_prefix: str | None = None
    hash_length: int = 0
    not_found: bool = False
