"""
tests/conftest.py -- Shared test fixtures for Passport integration tests.

This module provides:
  - make_user_store(): isolated named in-memory DB for one test or module
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - client: TestClient (follow_redirects=False) with cookies and rate-limit
    buckets cleared before every test
  - ensure_user() / token_for(): create accounts and mint tokens directly
  - csrf_headers(): X-CSRF-Token for cookie-authenticated state-changing calls

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any core/auth import so get_settings() sees
the test values: a fixed SECRET_KEY_BASE, host-only cookies (TestClient
talks to "testserver", which is not under .lvh.me) and non-secure cookies.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any core/auth import.
os.environ.setdefault("DEBUG", "true")
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY_BASE"] = "test-secret-key-base-0123456789abcdef0123456789"
os.environ["COOKIE_DOMAIN"] = ""

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import Role, TokenIdentity, User
from auth.service import normalize_email
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings

TEST_PASSWORD = "password123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_user_store(db_suffix: str | None = None) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state. Random when omitted.
    """
    name = db_suffix or uuid.uuid4().hex
    return UserStore(db_url=f"sqlite:///file:test_passport_{name}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    Builds the same components as production through init_state, but over
    the pre-created test store and without the cleanup task.
    """
    from api.main import init_state

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, get_settings(), user_store=user_store)
        yield

    return test_lifespan


def ensure_user(email: str, password: str = TEST_PASSWORD, role: Role = Role.user) -> User:
    """Return the user with this email in the running app's store, creating it if needed."""
    store: UserStore = app.state.user_store
    existing = store.get_by_email(normalize_email(email))
    if existing is not None:
        if existing.role is not role:
            store.update_user(existing.id, role=role)
            existing.role = role
        return existing
    user = User(email=normalize_email(email), password_hash=hash_password(password), role=role)
    user.id = store.create_user(user)
    return user


def token_for(user: User) -> str:
    return app.state.tokens.sign(TokenIdentity(user_id=user.id, email=user.email))


def bearer(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user)}"}


def csrf_headers(client: TestClient) -> dict[str, str]:
    """Fetch a CSRF token (the client keeps its cookie) and return the echoing header."""
    token = client.get("/api/auth/csrf").json()["csrfToken"]
    return {"X-CSRF-Token": token}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    """A fresh, empty store for unit tests that do not need the app."""
    store = make_user_store()
    yield store
    store.close()


@pytest.fixture(scope="module")
def _app_client(request) -> Generator[TestClient, None, None]:
    """One TestClient per test module, over that module's own database.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations*, which are invisible once the client follows them.
    """
    store = make_user_store(request.module.__name__.rsplit(".", 1)[-1])
    app.router.lifespan_context = _patch_lifespan(store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client
    store.close()


@pytest.fixture
def client(_app_client: TestClient) -> TestClient:
    """The module's TestClient with an empty cookie jar and empty rate-limit buckets."""
    _app_client.cookies.clear()
    app.state.rate_limiter.reset()
    return _app_client


@pytest.fixture
def admin(client: TestClient) -> User:
    return ensure_user("admin@example.com", role=Role.admin)


@pytest.fixture
def member(client: TestClient) -> User:
    return ensure_user("member@example.com", role=Role.user)
