"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Identity is resolved in priority order:
  1. Authorization: Bearer <token> header -- API clients and sibling services.
  2. oh_session cookie (legacy jwt_token) -- the SSO cookie set at sign-in.
  3. session_id cookie -- server-side session, used when the token is absent
     or expired but the session is still live.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises Unauthenticated.
require_admin() funnels through auth.admin.require_admin and raises Forbidden
for anonymous and non-admin callers alike.
require_csrf_for_cookie_auth() guards state-changing /api routes: callers
authenticated by cookie must echo the CSRF token in X-CSRF-Token.
enforce_rate_limit(route) builds a dependency that consumes one attempt from
the app's RateLimiter and raises RateLimited when the bucket is full.

All components are read from request.app.state; nothing here is global.

Layer rule: no imports from api/ or web/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request
from slowapi.util import get_remote_address

from auth import admin
from auth.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME
from auth.errors import CSRFMismatch, InvalidToken, RateLimited, Unauthenticated
from auth.models import User
from auth.service import AuthService

logger = logging.getLogger("passport.auth")


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def client_ip(request: Request) -> str:
    """The peer address of the connection.

    X-Forwarded-For is never read here. Behind a reverse proxy, uvicorn's
    proxy-headers handling rewrites the peer address, and only for proxies
    listed in TRUSTED_PROXIES (see `main.py serve`).
    """
    return get_remote_address(request)


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises for bad credentials."""
    cookies = request.app.state.cookies
    service: AuthService = request.app.state.auth_service
    return service.resolve_user(cookies.read_token(request), cookies.read_session_id(request))


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise Unauthenticated()
    return user


def require_admin(request: Request) -> User:
    """Require the admin role. Anonymous and non-admin both get 403."""
    return admin.require_admin(try_get_current_user(request))


def require_csrf_for_cookie_auth(request: Request) -> None:
    """Double-submit check for state-changing /api calls made with cookies.

    A valid Authorization: Bearer token exempts the request; a forging page
    cannot attach one. A request with no auth cookie is left to the auth
    dependency that follows (401/403). Everything else must echo the
    csrf_token cookie's value in the X-CSRF-Token header (GET /api/auth/csrf).
    """
    cookies = request.app.state.cookies
    bearer = cookies.read_bearer(request)
    if bearer:
        service: AuthService = request.app.state.auth_service
        try:
            service.verify(bearer, cookies.read_session_id(request))
            return
        except InvalidToken:
            pass
    if not cookies.has_auth_cookie(request):
        return
    csrf = request.app.state.csrf
    if not csrf.verify(request.cookies.get(CSRF_COOKIE_NAME), request.headers.get(CSRF_HEADER_NAME)):
        logger.warning("CSRF check failed on %s from %s", request.url.path, client_ip(request))
        raise CSRFMismatch()


def enforce_rate_limit(route: str):
    """Dependency factory: one RateLimiter attempt per call for `route`.

    Usage:
        @router.post("/auth/signin", dependencies=[Depends(enforce_rate_limit("signin"))])
    """

    def _dependency(request: Request) -> None:
        limiter = request.app.state.rate_limiter
        source = client_ip(request)
        if not limiter.allow(source, route):
            raise RateLimited(retry_after=limiter.retry_after(source, route))

    return _dependency
