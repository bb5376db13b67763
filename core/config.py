"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Passport happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key_base -> SECRET_KEY_BASE, jwt_issuer -> JWT_ISSUER).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Enforces the SECRET_KEY_BASE policy and derives the values
      that depend on the environment (secure cookies, CORS origin pattern).

Cross-service contract:
  SECRET_KEY_BASE, JWT_ISSUER and COOKIE_DOMAIN must be identical on every
  service that participates in SSO. Changing any of them invalidates every
  outstanding token or makes the SSO cookie invisible to sibling apps.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
import re
import secrets
from functools import lru_cache
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("passport.config")

_ONE_WEEK = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file, with the exception of
    SECRET_KEY_BASE which is only auto-generated when DEBUG=true.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    environment: Literal["development", "test", "production"] = "development"
    debug: bool = False
    # Empty string is the sentinel for "not configured".
    secret_key_base: str = ""
    database_url: str = "sqlite:///passport.db"

    # ------------------------------------------------------------------
    # Tokens and cookies
    # ------------------------------------------------------------------

    jwt_issuer: str = "passport.oceanheart.ai"
    token_lifetime_seconds: int = _ONE_WEEK
    # Leading dot scopes the cookie to every subdomain. Empty = host-only.
    cookie_domain: str = ".lvh.me"
    # None means "derive from environment" (True only in production).
    secure_cookies: Optional[bool] = None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_ttl_seconds: int = _ONE_WEEK
    session_cleanup_interval_seconds: int = 60 * 60
    # When true, /api/auth/verify also requires a live session for the
    # token's user, making sign-out effective immediately.
    verify_requires_session: bool = False
    # Lifetime of a single-use password reset link.
    password_reset_ttl_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # Credential submission
    # ------------------------------------------------------------------

    rate_limit_signin: int = 10
    rate_limit_signin_window_seconds: int = 180
    min_password_length: int = 8

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origin_regex: str = ""
    # Comma-separated proxy addresses whose X-Forwarded-For is believed
    # (uvicorn forwarded_allow_ips). Everyone else is keyed on the peer address.
    trusted_proxies: str = "127.0.0.1"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY_BASE policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart and other SSO services cannot
            verify them -- acceptable for local work only.

        Otherwise: refuse to start without a key. Keys shorter than 32
            characters are always rejected.
        """
        if not self.secret_key_base:
            if self.debug:
                self.secret_key_base = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY_BASE. "
                    "Tokens will not be accepted by other services or survive restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY_BASE is required. "
                    "Set SECRET_KEY_BASE in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key_base) < 32:
            raise ValueError("SECRET_KEY_BASE must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def derive_environment_defaults(self) -> "Settings":
        """Fill the fields whose defaults depend on other fields."""
        if self.secure_cookies is None:
            self.secure_cookies = self.environment == "production"
        if not self.cors_origin_regex and self.cookie_domain:
            parent = re.escape(self.cookie_domain.lstrip("."))
            self.cors_origin_regex = rf"https?://([a-z0-9-]+\.)*{parent}(:\d+)?"
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
