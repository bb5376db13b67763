"""
tests/test_config.py -- Unit tests for Settings validation and derived defaults.

Settings(...) keyword arguments override the environment, so these tests
do not depend on what conftest exported.
"""

from __future__ import annotations

import re

import pytest
from pydantic import ValidationError

from core.config import Settings

KEY = "k" * 40


def test_missing_secret_outside_debug_fails() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY_BASE is required"):
        Settings(secret_key_base="", debug=False, _env_file=None)


def test_missing_secret_in_debug_is_generated() -> None:
    settings = Settings(secret_key_base="", debug=True, _env_file=None)
    assert len(settings.secret_key_base) >= 32


def test_short_secret_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(secret_key_base="too-short", _env_file=None)


def test_secure_cookies_follow_environment() -> None:
    assert Settings(secret_key_base=KEY, environment="production", _env_file=None).secure_cookies is True
    assert Settings(secret_key_base=KEY, environment="development", _env_file=None).secure_cookies is False
    explicit = Settings(secret_key_base=KEY, environment="production", secure_cookies=False, _env_file=None)
    assert explicit.secure_cookies is False


def test_defaults() -> None:
    settings = Settings(secret_key_base=KEY, cookie_domain=".lvh.me", _env_file=None)
    assert settings.jwt_issuer == "passport.oceanheart.ai"
    assert settings.token_lifetime_seconds == 604800
    assert settings.session_ttl_seconds == 604800
    assert settings.rate_limit_signin == 10
    assert settings.rate_limit_signin_window_seconds == 180
    assert settings.min_password_length == 8
    assert settings.verify_requires_session is False
    assert settings.password_reset_ttl_seconds == 3600
    assert settings.trusted_proxies == "127.0.0.1"


def test_cors_regex_derived_from_cookie_domain() -> None:
    pattern = re.compile(Settings(secret_key_base=KEY, cookie_domain=".lvh.me", _env_file=None).cors_origin_regex)
    assert pattern.fullmatch("https://app.lvh.me")
    assert pattern.fullmatch("http://lvh.me:3000")
    assert not pattern.fullmatch("https://evil.example")
    assert not pattern.fullmatch("https://lvh.me.evil.example")


def test_no_cors_regex_for_host_only_cookies() -> None:
    assert Settings(secret_key_base=KEY, cookie_domain="", _env_file=None).cors_origin_regex == ""
