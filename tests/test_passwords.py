"""Unit tests for auth/passwords.py -- hashing and multi-algorithm verification.

Covers:
- hash() always produces Argon2id
- Argon2 and bcrypt hashes verify by hint and by prefix
- a wrong plaintext fails for every algorithm
- malformed / truncated hashes are failures, never exceptions
- the plaintext strategy is absent unless allow_plaintext is on
- inspect() reports the dispatch path
"""

import logging

import bcrypt
import pytest

from auth.passwords import MODE_ARGON2, MODE_BCRYPT, MODE_UNKNOWN, PasswordVerifier


@pytest.fixture
def verifier(cheap_hasher):
    return PasswordVerifier(hasher=cheap_hasher)


@pytest.fixture
def bcrypt_hash():
    return bcrypt.hashpw(b"Secret1!", bcrypt.gensalt(rounds=4)).decode("utf-8")


class TestHash:
    def test_hash_is_argon2id(self, verifier):
        assert verifier.hash("Secret1!").startswith("$argon2id$")

    def test_hash_is_salted(self, verifier):
        assert verifier.hash("Secret1!") != verifier.hash("Secret1!")


class TestArgon2:
    def test_correct_password_with_hint(self, verifier):
        digest = verifier.hash("Secret1!")
        assert verifier.verify("Secret1!", digest, "argon2id") is True

    def test_correct_password_by_prefix_without_hint(self, verifier):
        digest = verifier.hash("Secret1!")
        assert verifier.verify("Secret1!", digest) is True

    def test_wrong_password(self, verifier):
        digest = verifier.hash("Secret1!")
        assert verifier.verify("secret1!", digest, "argon2id") is False


class TestBcrypt:
    def test_correct_password_by_prefix(self, verifier, bcrypt_hash):
        assert verifier.verify("Secret1!", bcrypt_hash) is True

    def test_correct_password_with_hint(self, verifier, bcrypt_hash):
        assert verifier.verify("Secret1!", bcrypt_hash, "BCRYPT") is True

    def test_wrong_password(self, verifier, bcrypt_hash):
        assert verifier.verify("nope", bcrypt_hash, "bcrypt") is False


class TestMalformedHashes:
    """A broken stored value is a failed login, not a 500."""

    @pytest.mark.parametrize(
        "stored, hint",
        [
            ("$argon2id$v=19$m=8,t=1,p=1$truncated", "argon2id"),
            ("$2b$04$tooshort", "bcrypt"),
            ("not-a-hash-at-all", "argon2"),
            ("not-a-hash-at-all", "bcrypt"),
            ("not-a-hash-at-all", None),
        ],
    )
    def test_malformed_hash_returns_false(self, verifier, stored, hint):
        assert verifier.verify("Secret1!", stored, hint) is False

    def test_empty_or_missing_hash_returns_false(self, verifier):
        assert verifier.verify("Secret1!", "", "argon2id") is False
        assert verifier.verify("Secret1!", None) is False


class TestPlaintextGate:
    def test_plaintext_never_matches_when_disabled(self, verifier):
        assert verifier.verify("Secret1!", "Secret1!", "plain") is False

    def test_plaintext_matches_when_enabled(self, cheap_hasher, caplog):
        verifier = PasswordVerifier(allow_plaintext=True, hasher=cheap_hasher)
        with caplog.at_level(logging.ERROR, logger="tradeauth.passwords"):
            assert verifier.verify("Secret1!", "Secret1!", "legacy") is True
        assert "SECURITY WARNING" in caplog.text

    def test_plaintext_wrong_password_still_fails_when_enabled(self, cheap_hasher):
        verifier = PasswordVerifier(allow_plaintext=True, hasher=cheap_hasher)
        assert verifier.verify("Secret2!", "Secret1!", "legacy") is False

    def test_mislabelled_bcrypt_hash_is_claimed_by_prefix(self, verifier, bcrypt_hash):
        assert verifier.verify("Secret1!", bcrypt_hash, "md5-ish") is True

    def test_untagged_argon2_hash_reaches_fallback_chain(self, verifier):
        # Prefix stripped of its leading "$": nobody claims it and every
        # fallback strategy rejects it.
        digest = verifier.hash("Secret1!")[1:]
        assert verifier.verify("Secret1!", digest, "custom") is False


class TestInspect:
    def test_reports_argon2_mode(self, verifier):
        digest = verifier.hash("Secret1!")
        report = verifier.inspect("Secret1!", digest, "argon2id")
        assert report.matched is True
        assert report.mode == MODE_ARGON2
        assert report.hash_prefix == digest[:12]
        assert report.hash_length == len(digest)

    def test_reports_bcrypt_mode(self, verifier, bcrypt_hash):
        report = verifier.inspect("wrong", bcrypt_hash, None)
        assert report.matched is False
        assert report.mode == MODE_BCRYPT

    def test_reports_unknown_mode(self, verifier):
        report = verifier.inspect("Secret1!", "Secret1!", "plain")
        assert report.matched is False
        assert report.mode == MODE_UNKNOWN

    def test_dummy_verify_does_not_raise(self, verifier):
        verifier.dummy_verify("anything")
