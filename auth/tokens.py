"""
auth/tokens.py -- HS256 bearer tokens and password hashing.

Security design decisions:
  JWT: python-jose with HS256. The payload field names (userId, email, iat,
       exp, iss) are a wire contract shared with every service that verifies
       Passport tokens -- do not rename them. The signing secret is the single
       trust root; rotating it invalidates every outstanding token.

       verify() collapses every failure (malformed, bad signature, expired,
       wrong issuer, missing claims) into one InvalidToken so callers cannot
       be used as an oracle for which check failed.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in AuthService.sign_in() so response time
       does not reveal whether an email is registered.

  Reset tokens: 32 random bytes as hex, delivered to the user once. Only
       HMAC-SHA256(secret, token) is stored, so a database dump cannot be
       replayed against /api/auth/password/reset/confirm.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidToken
from auth.models import TokenIdentity

logger = logging.getLogger("passport.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt rejects input beyond 72 bytes. AuthService._check_password
    enforces that cap before anything reaches here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        return False


# Computed once at module load so the first sign-in attempt is not measurably
# slower than later ones. Always checked against when the email is unknown.
_DUMMY_HASH: str = hash_password("passport_timing_dummy")


def equalize_timing(plain: str) -> None:
    """Burn one bcrypt comparison. Call on every credential-miss path."""
    verify_password(plain, _DUMMY_HASH)


def generate_reset_token() -> str:
    """Single-use password reset token: 32 random bytes, hex encoded."""
    return secrets.token_hex(32)


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Signs and verifies SSO bearer tokens. Stateless; safe to share.

    Usage:
        tokens = TokenService(secret, issuer="passport.oceanheart.ai")
        token = tokens.sign(TokenIdentity(user_id=1, email="a@example.com"))
        identity = tokens.verify(token)   # raises InvalidToken
    """

    def __init__(self, secret: str, issuer: str, lifetime_seconds: int = 7 * 24 * 60 * 60) -> None:
        self._secret = secret
        self.issuer = issuer
        self.lifetime_seconds = lifetime_seconds

    def sign(self, identity: TokenIdentity) -> str:
        """Return header.payload.signature for the identity, valid for lifetime_seconds."""
        now = int(time.time())
        payload = {
            "userId": identity.user_id,
            "email": identity.email,
            "iat": now,
            "exp": now + self.lifetime_seconds,
            "iss": self.issuer,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenIdentity:
        """Return the identity in a valid token. Raises InvalidToken otherwise.

        jose performs the constant-time HMAC comparison and the exp / iss
        checks. exp is re-checked strictly (exp must be > now) because jose
        accepts a token in its final second.
        """
        if not token or not isinstance(token, str):
            raise InvalidToken()
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                issuer=self.issuer,
                options={"require_exp": True, "require_iat": True, "require_iss": True},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", type(exc).__name__)
            raise InvalidToken() from None

        if not isinstance(payload.get("exp"), (int, float)) or payload["exp"] <= time.time():
            raise InvalidToken()

        # Legacy tokens carry user_id
        user_id = payload.get("userId", payload.get("user_id"))
        email = payload.get("email")
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
            raise InvalidToken()
        if not isinstance(email, str) or not email:
            raise InvalidToken()
        return TokenIdentity(user_id=user_id, email=email)

    def digest(self, raw_token: str) -> str:
        """HMAC-SHA256(secret, raw_token) as hex. Deterministic, for lookup by hash."""
        return hmac.new(self._secret.encode("utf-8"), raw_token.encode("utf-8"), hashlib.sha256).hexdigest()
