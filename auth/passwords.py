"""
auth/passwords.py -- Password hashing and multi-algorithm verification.

New and changed credentials are always hashed with Argon2id (argon2-cffi).
Verification has to cope with what earlier deployments left behind, so it
dispatches over an ordered list of verifier strategies:

  1. Argon2 -- algorithm hint contains "argon2" or the hash starts "$argon2".
  2. bcrypt -- hint contains "bcrypt" or the hash starts $2a$ / $2b$ / $2y$.
  3. Unknown -- try Argon2, then bcrypt, then (only when allow_plaintext is
     on) constant-time string equality against the stored value.

The plaintext strategy is not merely skipped when the flag is off: it is
never added to the chain. A malformed or truncated hash is a verification
failure, never an exception.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hmac
import logging

import bcrypt
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from auth.models import VerifyReport

logger = logging.getLogger("tradeauth.passwords")

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

MODE_ARGON2 = "argon2"
MODE_BCRYPT = "bcrypt"
MODE_UNKNOWN = "unknown"
MODE_PLAINTEXT = "plaintext"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class Argon2Strategy:
    name = MODE_ARGON2

    def __init__(self, hasher: PasswordHasher) -> None:
        self._hasher = hasher

    def claims(self, stored_hash: str, hint: str | None) -> bool:
        return "argon2" in (hint or "").lower() or stored_hash.startswith("$argon2")

    def matches(self, plain: str, stored_hash: str) -> bool:
        try:
            return self._hasher.verify(stored_hash, plain)
        except (VerificationError, InvalidHashError):
            return False


class BcryptStrategy:
    name = MODE_BCRYPT

    def claims(self, stored_hash: str, hint: str | None) -> bool:
        return "bcrypt" in (hint or "").lower() or stored_hash.startswith(_BCRYPT_PREFIXES)

    def matches(self, plain: str, stored_hash: str) -> bool:
        # ValueError covers "Invalid salt" on malformed hashes and the
        # 72-byte password limit enforced by bcrypt 5.x.
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), stored_hash.encode("utf-8"))
        except ValueError:
            return False


class PlaintextStrategy:
    """Legacy rows that stored the raw password. Dev only."""

    name = MODE_PLAINTEXT

    def claims(self, stored_hash: str, hint: str | None) -> bool:
        return False

    def matches(self, plain: str, stored_hash: str) -> bool:
        return hmac.compare_digest(plain.encode("utf-8"), stored_hash.encode("utf-8"))


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------


class PasswordVerifier:
    """Hash new passwords with Argon2id; verify stored ones of any known shape.

    Usage:
        verifier = PasswordVerifier(allow_plaintext=config.allow_plaintext)
        digest = verifier.hash("Secret1!")
        verifier.verify("Secret1!", digest, "argon2id")   # True
    """

    def __init__(self, allow_plaintext: bool = False, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)
        argon2_strategy = Argon2Strategy(self._hasher)
        bcrypt_strategy = BcryptStrategy()
        # Strategies that can claim a hash by hint or prefix, in priority order.
        self._dispatch = [argon2_strategy, bcrypt_strategy]
        # Chain for hashes nobody claims.
        self._fallback = [argon2_strategy, bcrypt_strategy]
        if allow_plaintext:
            self._fallback.append(PlaintextStrategy())
        self.allow_plaintext = allow_plaintext
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones.
        self._dummy_hash = self._hasher.hash("tradeauth_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return an Argon2id digest. The only hash shape ever written."""
        return self._hasher.hash(plain)

    def verify(self, plain: str, stored_hash: str | None, algorithm_hint: str | None = None) -> bool:
        return self._run(plain, stored_hash, algorithm_hint)[0]

    def inspect(self, plain: str, stored_hash: str | None, algorithm_hint: str | None = None) -> VerifyReport:
        """Verify and report which dispatch path was taken (dev diagnostics)."""
        matched, mode = self._run(plain, stored_hash, algorithm_hint)
        return VerifyReport(
            matched=matched,
            mode=mode,
            algorithm=algorithm_hint,
            hash_prefix=stored_hash[:12] if stored_hash else None,
            hash_length=len(stored_hash) if stored_hash else 0,
        )

    def dummy_verify(self, plain: str) -> None:
        """Burn one Argon2 compare so a missing user costs the same as a wrong password."""
        Argon2Strategy(self._hasher).matches(plain, self._dummy_hash)

    def _run(self, plain: str, stored_hash: str | None, hint: str | None) -> tuple[bool, str]:
        if plain is None or not stored_hash:
            return False, MODE_UNKNOWN

        for strategy in self._dispatch:
            if strategy.claims(stored_hash, hint):
                return strategy.matches(plain, stored_hash), strategy.name

        logger.warning(
            "Unknown password algorithm: algorithm=%s hashPrefix=%s length=%d",
            hint,
            stored_hash[:10],
            len(stored_hash),
        )
        for strategy in self._fallback:
            if strategy.matches(plain, stored_hash):
                if strategy.name == MODE_PLAINTEXT:
                    logger.error("SECURITY WARNING: accepted a PLAINTEXT password match (ALLOW_PLAINTEXT=true)")
                return True, MODE_UNKNOWN
        return False, MODE_UNKNOWN
