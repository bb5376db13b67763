"""
auth/cookies.py -- SSO and session cookies.

Cookie contract (shared with every service on the parent domain):
  oh_session  -- the bearer token; read by sibling apps for SSO.
  session_id  -- the opaque server-side session id; only Passport reads it.
  jwt_token   -- legacy token cookie name. Still read, always cleared.

Attributes on both live cookies: HttpOnly, SameSite=Lax, Path=/,
Domain=<COOKIE_DOMAIN>, Secure in production, Max-Age one week.

Renaming a cookie or changing its domain/path is a protocol change: every
cooperating service must switch at the same time or SSO silently breaks.

Clearing re-sends each cookie with the same name, domain and path and an
expiry in the past; browsers only drop a cookie when all three match.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from auth.models import Session

TOKEN_COOKIE = "oh_session"
SESSION_COOKIE = "session_id"
LEGACY_TOKEN_COOKIE = "jwt_token"


class CookieManager:
    """Writes and reads the auth cookies for Starlette requests/responses."""

    def __init__(self, domain: str | None, secure: bool, max_age: int = 7 * 24 * 60 * 60) -> None:
        # "" means host-only (no Domain attribute), used for localhost and tests.
        self.domain = domain or None
        self.secure = secure
        self.max_age = max_age

    def _set(self, response, name: str, value: str) -> None:
        response.set_cookie(
            name,
            value=value,
            max_age=self.max_age,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )

    def set_auth_cookies(self, response, session: Session, token: str) -> None:
        self._set(response, SESSION_COOKIE, session.id)
        self._set(response, TOKEN_COOKIE, token)

    def set_token_cookie(self, response, token: str) -> None:
        self._set(response, TOKEN_COOKIE, token)

    def clear_auth_cookies(self, response) -> None:
        for name in (TOKEN_COOKIE, SESSION_COOKIE, LEGACY_TOKEN_COOKIE):
            response.delete_cookie(
                name,
                path="/",
                domain=self.domain,
                secure=self.secure,
                httponly=True,
                samesite="lax",
            )

    def read_bearer(self, request) -> str | None:
        """Token from an Authorization: Bearer header, or None."""
        auth_header = request.headers.get("Authorization", "")
        scheme, _, credentials = auth_header.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
        return None

    def read_token(self, request) -> str | None:
        """Bearer header first (API clients), then the SSO cookie (browsers)."""
        return (
            self.read_bearer(request)
            or request.cookies.get(TOKEN_COOKIE)
            or request.cookies.get(LEGACY_TOKEN_COOKIE)
            or None
        )

    def has_auth_cookie(self, request) -> bool:
        """True when the browser sent any cookie that can authenticate it."""
        return any(request.cookies.get(name) for name in (TOKEN_COOKIE, SESSION_COOKIE, LEGACY_TOKEN_COOKIE))

    def read_session_id(self, request) -> str | None:
        return request.cookies.get(SESSION_COOKIE) or None
