"""
auth/tokens.py -- Stateless access tokens (JWT, HS256) and refresh-id generation.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry iss, aud, iat, exp, userId and
       role. Validity is proven by signature + expiry + issuer + audience;
       there is never a storage lookup. Any failure raises Unauthorized --
       the route layer turns that into a 401.

  Refresh ids: secrets.token_urlsafe(32) gives 256 bits of entropy. They are
       opaque; only the session table gives them meaning.

  SECRET_KEY: injected through AuthConfig, never read from the environment
       here. core.config.Settings validates the key at startup and refuses
       keys shorter than 32 characters.

TokenIssuer holds no mutable state after construction, so one instance is
shared by every request thread without locking.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import Unauthorized
from auth.models import DEFAULT_ROLE, AuthConfig, ParsedToken

logger = logging.getLogger("tradeauth.tokens")

_ALGORITHM = "HS256"
_BEARER_SCHEME = "bearer"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    """Return a new unguessable refresh-session id (43 url-safe chars)."""
    return secrets.token_urlsafe(32)


def strip_bearer(raw: str | None) -> str:
    """Drop an optional "Bearer" scheme (any case) and surrounding whitespace.

    A bare "Bearer" with nothing after it yields "".
    """
    if not raw:
        return ""
    parts = raw.split(maxsplit=1)
    if not parts:
        return ""
    if parts[0].lower() == _BEARER_SCHEME:
        return parts[1].strip() if len(parts) > 1 else ""
    return raw.strip()


class TokenIssuer:
    """Mint and validate access tokens.

    Usage:
        issuer = TokenIssuer(config)
        token = issuer.issue("3f1c...", "user")
        issuer.parse(f"Bearer {token}")   # ParsedToken(user_id="3f1c...", role="user")
    """

    def __init__(self, config: AuthConfig, clock: Callable[[], datetime] = _utcnow) -> None:
        self._secret = config.secret_key
        self._issuer = config.issuer
        self._audience = config.audience
        self._ttl = config.access_ttl_seconds
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return self._ttl

    def issue(self, user_id: str, role: str) -> str:
        """Encode a signed JWT for user_id/role expiring access_ttl_seconds from now."""
        now = self._clock()
        payload = {
            "iss": self._issuer,
            "aud": self._audience,
            "iat": now,
            "exp": now + timedelta(seconds=self._ttl),
            "userId": user_id,
            "role": role,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def parse(self, raw: str | None) -> ParsedToken:
        """Verify a token (with or without "Bearer ") and return its identity.

        Raises Unauthorized on a blank input, bad signature, expired token,
        wrong issuer/audience, or a missing userId claim. role defaults to
        "user" when the claim is absent.
        """
        token = strip_bearer(raw)
        if not token:
            raise Unauthorized("Missing token")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
            )
        except ExpiredSignatureError as exc:
            raise Unauthorized("Token expired") from exc
        except JWTError as exc:
            logger.debug("Rejected access token: %s", exc)
            raise Unauthorized("Invalid token") from exc

        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not user_id.strip():
            raise Unauthorized("Invalid token")
        role = payload.get("role")
        if not isinstance(role, str) or not role:
            role = DEFAULT_ROLE
        return ParsedToken(user_id=user_id, role=role)
