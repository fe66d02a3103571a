"""
auth/service.py -- Signup / login / refresh / logout orchestration.

AuthService composes the four leaves:

    CredentialStore   where users and password hashes live (any layout)
    PasswordVerifier  Argon2id for new hashes, bcrypt/plaintext for legacy reads
    TokenIssuer       stateless access tokens
    SessionStore      single-use refresh sessions

issue_tokens() is the one place a session is created and an access token is
minted; login and refresh both go through it, so rotation and minting can
never drift apart.

Enumeration resistance [C1]: login answers "Invalid email or password" for an
unknown email, a blank stored hash and a wrong password alike, and it runs a
dummy Argon2 compare on the unknown-email path so response time does not
tell the cases apart.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.errors import Conflict, Unauthorized, ValidationError
from auth.models import (
    DEFAULT_ROLE,
    AuthConfig,
    ParsedToken,
    PasswordChangeResult,
    TokenBundle,
    User,
    VerifyReport,
)
from auth.passwords import MODE_UNKNOWN, PasswordVerifier
from auth.sessions import SessionStore
from auth.store import ARGON2ID, CredentialStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("tradeauth.auth")

_INVALID_LOGIN = "Invalid email or password"


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class AuthService:
    """Auth flows over the credential store, verifier, issuer and session store.

    Usage:
        service = AuthService.build(engine, config)
        service.signup("A", "a@x.com", "USA", "Secret1!")
        bundle = service.login("a@x.com", "Secret1!")
        bundle = service.refresh(bundle.refresh_token)
        service.logout(bundle.refresh_token)
    """

    def __init__(
        self,
        store: CredentialStore,
        sessions: SessionStore,
        tokens: TokenIssuer,
        passwords: PasswordVerifier,
        config: AuthConfig,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.tokens = tokens
        self.passwords = passwords
        self.config = config

    @classmethod
    def build(cls, engine, config: AuthConfig, *, schema: str | None = None, hasher=None) -> AuthService:
        """Wire the default component set onto one engine."""
        store = CredentialStore(engine, schema=schema)
        sessions = SessionStore(engine, store.tables, role_lookup=store.get_role)
        return cls(
            store=store,
            sessions=sessions,
            tokens=TokenIssuer(config),
            passwords=PasswordVerifier(allow_plaintext=config.allow_plaintext, hasher=hasher),
            config=config,
        )

    # ------------------------------------------------------------------
    # Signup / login
    # ------------------------------------------------------------------

    def signup(self, name: str | None, email: str | None, country: str | None, password: str | None) -> str:
        """Register a user. Returns the confirmation message.

        Raises ValidationError (missing field), Conflict (email taken, any
        casing), SignupFailed (no users layout) or StorageUnavailable.
        """
        if _blank(name) or _blank(email) or _blank(country) or _blank(password):
            raise ValidationError("Missing required fields")
        email = email.strip()
        if self.store.email_exists(email):
            raise Conflict("Email already registered")

        digest = self.passwords.hash(password)
        user_id = self.store.create_user(email, name.strip(), country.strip())
        if not self.store.persist_password_hash(user_id, digest, ARGON2ID):
            logger.warning("Signup for user %s: password hash could not be persisted", user_id)
        logger.info("Signup completed for user %s", user_id)
        return "Signup successful"

    def login(self, email: str | None, password: str | None) -> TokenBundle:
        if _blank(email) or password is None:
            raise Unauthorized("Missing credentials")
        email = email.strip()

        record = self.store.resolve_credentials(email)
        if record is None:
            logger.debug("No credentials record found for %s", email)
            self.passwords.dummy_verify(password)
            raise Unauthorized(_INVALID_LOGIN)
        if _blank(record.password_hash):
            logger.info("Login failed for %s: empty password hash", email)
            self.passwords.dummy_verify(password)
            raise Unauthorized(_INVALID_LOGIN)

        if not self.passwords.verify(password, record.password_hash, record.algorithm):
            logger.info("Login credential mismatch for %s (layout %s)", email, record.layout)
            raise Unauthorized(_INVALID_LOGIN)

        logger.info("Login success for user %s", record.user_id)
        return self.issue_tokens(record.user_id, record.role or DEFAULT_ROLE)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None) -> TokenBundle:
        """Exchange a refresh session for a new access token and a new session.

        The presented id is consumed: a second refresh with it fails with
        Unauthorized("Session not found").
        """
        if _blank(refresh_token):
            raise Unauthorized("Missing refresh token")
        ttl = self.config.refresh_ttl_seconds
        session, session_id = self.sessions.rotate(refresh_token, ttl)
        return self._bundle(session.user_id, session.role, session_id, ttl)

    def issue_tokens(self, user_id: str, role: str, old_refresh_token: str | None = None) -> TokenBundle:
        """Rotate the refresh session (if any) and mint an access token."""
        if old_refresh_token:
            self.sessions.delete(old_refresh_token)
        ttl = self.config.refresh_ttl_seconds
        return self._bundle(user_id, role, self.sessions.create(user_id, ttl), ttl)

    def _bundle(self, user_id: str, role: str, session_id: str, ttl: int) -> TokenBundle:
        return TokenBundle(
            access_token=self.tokens.issue(user_id, role),
            refresh_token=session_id,
            refresh_ttl_seconds=ttl,
            role=role,
        )

    def logout(self, refresh_token: str | None) -> None:
        """Drop the refresh session. Always succeeds."""
        if not _blank(refresh_token):
            self.sessions.delete(refresh_token)

    def parse_token(self, header: str | None) -> ParsedToken:
        """Identity and role from an Authorization header value or a raw token."""
        return self.tokens.parse(header)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> User:
        profile = self.store.get_profile(user_id)
        if profile is None:
            raise Unauthorized("User not found")
        return profile

    def update_profile(self, user_id: str, name: str | None = None, email: str | None = None) -> tuple[int, User]:
        """Returns (fields updated, fresh profile). Raises Conflict on a taken email."""
        updated = self.store.update_profile(user_id, name=name, email=email)
        return updated, self.get_profile(user_id)

    def change_password(
        self, user_id: str, current_password: str | None, new_password: str | None
    ) -> PasswordChangeResult:
        """Verify the current password, then store an Argon2id hash of the new one.

        Failures are results, not exceptions: the caller reports
        updated=False with the message.
        """
        if current_password is None or _blank(new_password):
            return PasswordChangeResult(updated=False, message="Missing password(s)")
        record = self.store.resolve_credentials_by_user_id(user_id)
        if record is None or _blank(record.password_hash):
            return PasswordChangeResult(updated=False, message="No existing password found")
        if not self.passwords.verify(current_password, record.password_hash, record.algorithm):
            return PasswordChangeResult(updated=False, message="Current password is incorrect")

        written = self.store.persist_password_hash(user_id, self.passwords.hash(new_password), ARGON2ID)
        if not written:
            return PasswordChangeResult(updated=False, message="Password could not be stored")
        logger.info("Password changed for user %s", user_id)
        return PasswordChangeResult(updated=True)

    # ------------------------------------------------------------------
    # Dev helpers (callers gate these on config.dev_endpoints)
    # ------------------------------------------------------------------

    def dev_hash(self, password: str) -> str:
        return self.passwords.hash(password)

    def dev_reset_password(self, email: str, new_password: str) -> int:
        """Overwrite (or create) the credential for email. Returns rows written (0 or 1).

        A minimal users row is created when the email is unknown everywhere;
        name defaults to the local part of the address.
        """
        email = email.strip()
        user_id = self.store.find_user_id(email)
        if user_id is None:
            name = email.split("@", 1)[0]
            user_id = self.store.create_user(email, name, None)
            logger.info("dev_reset_password: created users row for %s with id %s", email, user_id)
        written = self.store.persist_password_hash(user_id, self.passwords.hash(new_password), ARGON2ID)
        return 1 if written else 0

    def dev_verify(self, email: str, password: str) -> VerifyReport:
        """Diagnostic credential check. Never raises for a missing user."""
        record = self.store.resolve_credentials((email or "").strip())
        if record is None:
            return VerifyReport(matched=False, mode=MODE_UNKNOWN, not_found=True)
        return self.passwords.inspect(password, record.password_hash, record.algorithm)
