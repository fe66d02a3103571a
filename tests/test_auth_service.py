"""Unit tests for auth/service.py -- signup, login, refresh rotation, logout, password change.

Covers:
- signup then login with the same credentials succeeds
- duplicate signup (any casing) is rejected and exactly one user row persists
- login against Argon2 and bcrypt credentials; wrong plaintext always fails
- raw-stored passwords never authenticate while plaintext is disabled
- refresh consumes its id; logout kills the id
- unknown email and wrong password are indistinguishable to the caller
- change_password outcomes
- dev helpers
"""

import bcrypt
import pytest
from sqlalchemy import text

from auth.errors import Conflict, StorageUnavailable, Unauthorized, ValidationError
from auth.models import AuthConfig
from auth.service import AuthService


def _signup(service, email="a@x.com", password="Secret1!"):
    return service.signup("A", email, "USA", password)


def _count_users(engine) -> int:
    with engine.connect() as conn:
        return conn.execute(text("SELECT COUNT(*) FROM users")).scalar()


class TestSignup:
    def test_signup_then_login(self, service):
        assert _signup(service) == "Signup successful"
        bundle = service.login("a@x.com", "Secret1!")
        assert bundle.role == "user"
        assert bundle.access_token
        assert bundle.refresh_token

    @pytest.mark.parametrize("second", ["a@x.com", "A@X.COM", "  a@x.com  "])
    def test_duplicate_email_rejected(self, service, engine, second):
        _signup(service)
        with pytest.raises(Conflict, match="Email already registered"):
            _signup(service, email=second)
        assert _count_users(engine) == 1

    @pytest.mark.parametrize(
        "name, email, country, password",
        [
            (None, "a@x.com", "USA", "pw"),
            ("A", "", "USA", "pw"),
            ("A", "a@x.com", "  ", "pw"),
            ("A", "a@x.com", "USA", None),
        ],
    )
    def test_missing_fields(self, service, name, email, country, password):
        with pytest.raises(ValidationError, match="Missing required fields"):
            service.signup(name, email, country, password)

    def test_stored_hash_is_argon2id(self, service):
        _signup(service)
        record = service.store.resolve_credentials("a@x.com")
        assert record.password_hash.startswith("$argon2id$")
        assert record.algorithm == "argon2id"


class TestLogin:
    def test_login_is_case_insensitive_and_trimmed(self, service):
        _signup(service)
        assert service.login("  A@X.com ", "Secret1!").role == "user"

    def test_wrong_password_and_unknown_email_look_the_same(self, service):
        _signup(service)
        with pytest.raises(Unauthorized) as wrong:
            service.login("a@x.com", "nope")
        with pytest.raises(Unauthorized) as unknown:
            service.login("ghost@x.com", "nope")
        assert wrong.value.message == unknown.value.message == "Invalid email or password"

    def test_unknown_email_runs_dummy_verify(self, service, monkeypatch):
        calls = []
        monkeypatch.setattr(service.passwords, "dummy_verify", lambda plain: calls.append(plain))
        with pytest.raises(Unauthorized):
            service.login("ghost@x.com", "nope")
        assert calls == ["nope"]

    def test_missing_credentials(self, service):
        with pytest.raises(Unauthorized, match="Missing credentials"):
            service.login("", "pw")
        with pytest.raises(Unauthorized, match="Missing credentials"):
            service.login("a@x.com", None)

    def test_bcrypt_credential(self, service):
        uid = service.store.create_user("b@x.com", "B", "USA")
        digest = bcrypt.hashpw(b"Secret1!", bcrypt.gensalt(rounds=4)).decode("utf-8")
        service.store.persist_password_hash(uid, digest, "bcrypt")
        assert service.login("b@x.com", "Secret1!").role == "user"
        with pytest.raises(Unauthorized):
            service.login("b@x.com", "Secret2!")

    def test_blank_stored_hash_fails(self, service):
        uid = service.store.create_user("c@x.com", "C", "USA")
        service.store.persist_password_hash(uid, "", "argon2id")
        with pytest.raises(Unauthorized, match="Invalid email or password"):
            service.login("c@x.com", "")

    def test_plaintext_never_authenticates_when_disabled(self, service):
        uid = service.store.create_user("p@x.com", "P", "USA")
        service.store.persist_password_hash(uid, "Secret1!", "plain")
        with pytest.raises(Unauthorized):
            service.login("p@x.com", "Secret1!")

    def test_plaintext_authenticates_when_enabled(self, engine, auth_config, cheap_hasher):
        config = AuthConfig(secret_key=auth_config.secret_key, allow_plaintext=True)
        service = AuthService.build(engine, config, hasher=cheap_hasher)
        uid = service.store.create_user("p@x.com", "P", "USA")
        service.store.persist_password_hash(uid, "Secret1!", "plain")
        assert service.login("p@x.com", "Secret1!").role == "user"

    def test_role_comes_from_store(self, service):
        uid = service.store.create_user("admin@x.com", "Root", "USA", role="admin")
        service.store.persist_password_hash(uid, service.passwords.hash("pw"))
        bundle = service.login("admin@x.com", "pw")
        assert bundle.role == "admin"
        assert service.parse_token(bundle.access_token).role == "admin"

    def test_storage_failure_is_not_a_login_failure(self, service, monkeypatch):
        def boom(email):
            raise StorageUnavailable("Credential store unavailable")

        monkeypatch.setattr(service.store, "resolve_credentials", boom)
        with pytest.raises(StorageUnavailable):
            service.login("a@x.com", "pw")


class TestRefreshAndLogout:
    def test_scenario(self, service):
        """signup -> login -> refresh -> replay of the old id fails."""
        _signup(service)
        first = service.login("a@x.com", "Secret1!")
        identity = service.parse_token(first.access_token)
        assert identity.role == "user"

        second = service.refresh(first.refresh_token)
        assert second.refresh_token != first.refresh_token
        assert service.parse_token(second.access_token).user_id == identity.user_id

        with pytest.raises(Unauthorized, match="Session not found"):
            service.refresh(first.refresh_token)

    def test_refresh_consumes_through_session_rotation(self, service, auth_config, monkeypatch):
        _signup(service)
        bundle = service.login("a@x.com", "Secret1!")
        calls = []
        real_rotate = service.sessions.rotate

        def spy(session_id, ttl_seconds):
            calls.append((session_id, ttl_seconds))
            return real_rotate(session_id, ttl_seconds)

        monkeypatch.setattr(service.sessions, "rotate", spy)
        rotated = service.refresh(bundle.refresh_token)
        assert calls == [(bundle.refresh_token, auth_config.refresh_ttl_seconds)]
        assert service.sessions.lookup(bundle.refresh_token) is None
        assert service.sessions.lookup(rotated.refresh_token) is not None

    def test_refresh_chain_keeps_working(self, service):
        _signup(service)
        bundle = service.login("a@x.com", "Secret1!")
        for _ in range(3):
            bundle = service.refresh(bundle.refresh_token)
        assert bundle.role == "user"

    def test_logout_then_refresh_fails(self, service):
        _signup(service)
        bundle = service.login("a@x.com", "Secret1!")
        service.logout(bundle.refresh_token)
        with pytest.raises(Unauthorized, match="Session not found"):
            service.refresh(bundle.refresh_token)

    def test_logout_always_succeeds(self, service):
        service.logout(None)
        service.logout("")
        service.logout("never-issued")

    def test_missing_refresh_token(self, service):
        with pytest.raises(Unauthorized, match="Missing refresh token"):
            service.refresh("  ")

    def test_refresh_ttl_is_reported(self, service, auth_config):
        _signup(service)
        bundle = service.login("a@x.com", "Secret1!")
        assert bundle.refresh_ttl_seconds == auth_config.refresh_ttl_seconds


class TestProfile:
    def test_get_profile(self, service):
        _signup(service)
        uid = service.store.find_user_id("a@x.com")
        profile = service.get_profile(uid)
        assert (profile.email, profile.name, profile.country, profile.role) == ("a@x.com", "A", "USA", "user")

    def test_get_profile_unknown_user(self, service):
        with pytest.raises(Unauthorized, match="User not found"):
            service.get_profile("ghost")

    def test_update_profile(self, service):
        _signup(service)
        uid = service.store.find_user_id("a@x.com")
        updated, profile = service.update_profile(uid, name="Alice")
        assert updated == 1
        assert profile.name == "Alice"


class TestChangePassword:
    @pytest.fixture
    def uid(self, service):
        _signup(service)
        return service.store.find_user_id("a@x.com")

    def test_success(self, service, uid):
        result = service.change_password(uid, "Secret1!", "NewSecret1!")
        assert result.updated is True
        assert service.login("a@x.com", "NewSecret1!")
        with pytest.raises(Unauthorized):
            service.login("a@x.com", "Secret1!")

    def test_wrong_current(self, service, uid):
        result = service.change_password(uid, "wrong", "NewSecret1!")
        assert result.updated is False
        assert result.message == "Current password is incorrect"

    def test_missing(self, service, uid):
        assert service.change_password(uid, None, "x").message == "Missing password(s)"
        assert service.change_password(uid, "Secret1!", " ").message == "Missing password(s)"

    def test_no_existing_password(self, service):
        uid = service.store.create_user("nopw@x.com", "N", "USA")
        result = service.change_password(uid, "anything", "NewSecret1!")
        assert result.message == "No existing password found"

    def test_upgrades_bcrypt_to_argon2id(self, service):
        uid = service.store.create_user("b@x.com", "B", "USA")
        digest = bcrypt.hashpw(b"Secret1!", bcrypt.gensalt(rounds=4)).decode("utf-8")
        service.store.persist_password_hash(uid, digest, "bcrypt")
        assert service.change_password(uid, "Secret1!", "NewSecret1!").updated is True
        record = service.store.resolve_credentials_by_user_id(uid)
        assert record.password_hash.startswith("$argon2id$")
        assert record.algorithm == "argon2id"


class TestDevHelpers:
    def test_dev_hash(self, service):
        assert service.dev_hash("pw").startswith("$argon2id$")

    def test_dev_reset_existing_user(self, service):
        _signup(service)
        assert service.dev_reset_password("a@x.com", "Reset1!") == 1
        assert service.login("a@x.com", "Reset1!")

    def test_dev_reset_creates_minimal_user(self, service):
        assert service.dev_reset_password("new.person@x.com", "Reset1!") == 1
        uid = service.store.find_user_id("new.person@x.com")
        assert service.get_profile(uid).name == "new.person"
        assert service.login("new.person@x.com", "Reset1!")

    def test_dev_verify(self, service):
        _signup(service)
        report = service.dev_verify("a@x.com", "Secret1!")
        assert report.matched is True
        assert report.mode == "argon2"
        assert report.algorithm == "argon2id"

    def test_dev_verify_unknown_user(self, service):
        report = service.dev_verify("ghost@x.com", "pw")
        assert report.not_found is True
        assert report.matched is False
