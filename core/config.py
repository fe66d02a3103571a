"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TradeAuth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, access_ttl_seconds -> ACCESS_TTL_SECONDS).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning; production
      mode refuses to start without one. Dev-only switches are refused
      outside dev mode.

Settings is never handed to the auth components directly. api/main.py and
main.py convert it to the immutable auth.models.AuthConfig once at startup
and inject that value into each component.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tradeauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'tradeauth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true is still needed for the
    auto-generated key).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Schema qualifier for every auth table ("accounts" on the MySQL
    # deployments). None means the connection's default schema.
    auth_db_schema: Optional[str] = None

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    jwt_issuer: str = "tariff"
    jwt_audience: str = "tariff-web"
    access_ttl_seconds: int = 900
    refresh_ttl_seconds: int = 604800
    session_purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Legacy / dev switches
    # ------------------------------------------------------------------

    # Accept raw-stored passwords under an unknown algorithm tag. Dev only.
    allow_plaintext: bool = False
    # Expose /auth/dev/* helpers. Disabled endpoints answer 404.
    dev_endpoints: bool = False

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    cookie_samesite: str = "lax"
    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost:3000"]
    # Host header allow-list for TrustedHostMiddleware. Tighten in production.
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Access tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters. HS256 signing
            relies on key entropy.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Access tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_dev_switches(self) -> "Settings":
        """Refuse ALLOW_PLAINTEXT outside dev mode; warn about dev endpoints."""
        if self.allow_plaintext:
            if not self.debug:
                raise ValueError("ALLOW_PLAINTEXT may only be enabled together with DEBUG=true.")
            logger.warning("ALLOW_PLAINTEXT is enabled. Raw-stored passwords will be accepted on login.")
        if self.dev_endpoints:
            logger.warning("DEV_ENDPOINTS is enabled. /auth/dev/* helpers are reachable.")
        if self.access_ttl_seconds <= 0 or self.refresh_ttl_seconds <= 0:
            raise ValueError("ACCESS_TTL_SECONDS and REFRESH_TTL_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
