"""
auth/csrf.py -- Double-submit CSRF defense for browser form submissions.

A random token is placed in a signed, httpOnly cookie and echoed into the
rendered form as a hidden field. A state-changing form POST is accepted only
when the submitted field equals the value inside the cookie. A forging site
can make the browser send the cookie but cannot read it, so it cannot
produce the matching field.

The cookie value is signed with itsdangerous so a subdomain that can plant
cookies on the parent domain still cannot mint a valid one without
SECRET_KEY_BASE.

Scope: every HTML form POST, plus the state-changing /api routes when the
caller is authenticated by cookie (they send the token in X-CSRF-Token,
fetched from GET /api/auth/csrf). Calls carrying a valid bearer token are
exempt. GET and HEAD never require a token.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import hmac
import secrets

from itsdangerous import BadData, URLSafeTimedSerializer

CSRF_COOKIE_NAME = "csrf_token"
CSRF_FIELD_NAME = "_csrf"
CSRF_HEADER_NAME = "X-CSRF-Token"

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})


class CSRFGuard:
    """Issue and validate double-submit tokens.

    max_age bounds how long a signed cookie stays acceptable (24h default).
    """

    def __init__(self, secret: str, secure: bool = False, max_age: int = 24 * 60 * 60) -> None:
        self._serializer = URLSafeTimedSerializer(secret, salt="passport.csrf")
        self.secure = secure
        self.max_age = max_age

    def issue(self) -> str:
        return secrets.token_urlsafe(32)

    def current(self, cookie_value: str | None) -> str:
        """The token already in a valid cookie, else a fresh one."""
        return self.load(cookie_value) or self.issue()

    def dump(self, token: str) -> str:
        """Signed cookie value for a token."""
        return self._serializer.dumps(token)

    def load(self, cookie_value: str | None) -> str | None:
        """Token inside a signed cookie value, or None if absent, tampered or stale."""
        if not cookie_value:
            return None
        try:
            token = self._serializer.loads(cookie_value, max_age=self.max_age)
        except BadData:
            return None
        return token if isinstance(token, str) and token else None

    def verify(self, cookie_value: str | None, submitted: str | None) -> bool:
        """True only when both values are present and the tokens are equal."""
        expected = self.load(cookie_value)
        if expected is None or not submitted:
            return False
        return hmac.compare_digest(expected.encode("utf-8"), submitted.encode("utf-8"))

    def set_cookie(self, response, token: str) -> None:
        response.set_cookie(
            CSRF_COOKIE_NAME,
            value=self.dump(token),
            httponly=True,
            samesite="lax",
            secure=self.secure,
            max_age=self.max_age,
            path="/",
        )
