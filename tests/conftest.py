"""
tests/conftest.py -- Shared test fixtures for TradeAuth unit and integration tests.

This module provides:
  - cheap_hasher: Argon2id with minimal cost parameters so tests stay fast
  - engine / auth_config / service: a fresh in-memory database and AuthService
    per test for unit tests of the auth core
  - _patch_lifespan(): wires a test AuthService into app.state, bypassing real startup
  - api_client: TestClient plus an admin token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because it runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit tests run on a single thread and use plain :memory:.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from argon2 import PasswordHasher, Type
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import AuthConfig
from auth.schema import create_auth_engine
from auth.service import AuthService

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"


class FakeClock:
    """Controllable clock for TTL tests. Call advance() to move time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cheap_hasher() -> PasswordHasher:
    """Argon2id with the lowest cost argon2-cffi accepts. Hashes stay valid Argon2id."""
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)


@pytest.fixture
def engine():
    eng = create_auth_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(secret_key=TEST_SECRET, dev_endpoints=True)


@pytest.fixture
def service(engine, auth_config, cheap_hasher) -> AuthService:
    """AuthService over a fresh in-memory database with the canonical tables."""
    return AuthService.build(engine, auth_config, hasher=cheap_hasher)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_service(db_suffix: str) -> AuthService:
    """Create an AuthService on an isolated named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    config = AuthConfig(secret_key=TEST_SECRET, dev_endpoints=True)
    hasher = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)
    return AuthService.build(create_auth_engine(url), config, hasher=hasher)


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The login rate limit is switched off so a module can log in as often as
    it needs to.
    """
    service = _make_test_service("api")

    admin_id = service.store.create_user("admin@example.com", "Admin", "USA", role="admin")
    service.store.persist_password_hash(admin_id, service.passwords.hash("adminpass123"))
    token = service.tokens.issue(admin_id, "admin")

    app.router.lifespan_context = _patch_lifespan(service)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin_id

    limiter.enabled = True
    service.store.close()
