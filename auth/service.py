"""
auth/service.py -- Authentication use cases: sign-up, sign-in, verify, refresh,
sign-out, password change and password reset.

AuthService is the only place that combines the stores, the token service and
password hashing. Routes call it and map its AuthError subclasses to HTTP.

Security:
  sign_in() always runs exactly one bcrypt comparison, against the stored
  hash or against _DUMMY_HASH when the email is unknown, and raises the same
  InvalidCredentials for both. Do NOT short-circuit the unknown-email path.

  verify() trusts the token's own expiry by default. With
  verify_requires_session=True it also requires a live session, so sign-out
  and admin revocation take effect immediately for every SSO service that
  calls /api/auth/verify.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError

from auth.errors import InvalidCredentials, InvalidToken, SessionNotFound, ValidationError
from auth.models import AuthResult, Role, Session, TokenIdentity, User
from auth.store import PasswordResetStore, SessionStore, UserStore
from auth.tokens import TokenService, equalize_timing, generate_reset_token, hash_password, verify_password

logger = logging.getLogger("passport.auth")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MAX_PASSWORD_BYTES = 72  # bcrypt input limit


def normalize_email(email: str) -> str:
    """Trim and lower-case. Every lookup and insert goes through this."""
    return (email or "").strip().lower()


# Delivery hook for reset tokens: (user, raw token, expiry epoch seconds).
ResetNotifier = Callable[[User, str, float], None]


def log_reset_notice(user: User, token: str, expires_at: float) -> None:
    """Default ResetNotifier. Passport sends no mail itself; the token is never logged."""
    logger.warning("No reset delivery configured; token for user id=%s was not sent", user.id)


class AuthService:
    """Authentication use cases over the user/session stores.

    Usage:
        service = AuthService(user_store, session_store, token_service)
        result = service.sign_in("A@Example.com", "secret123", ip="203.0.113.7")
        user = service.verify(result.token)
        service.sign_out(result.session.id)
    """

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        tokens: TokenService,
        min_password_length: int = 8,
        verify_requires_session: bool = False,
        resets: PasswordResetStore | None = None,
        reset_notifier: ResetNotifier | None = None,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.tokens = tokens
        self.min_password_length = min_password_length
        self.verify_requires_session = verify_requires_session
        self.resets = resets or PasswordResetStore(users.engine)
        self.reset_notifier = reset_notifier or log_reset_notice

    normalize_email = staticmethod(normalize_email)

    # ------------------------------------------------------------------
    # Registration and sign-in
    # ------------------------------------------------------------------

    def _check_password(self, password: str) -> None:
        if not password or len(password) < self.min_password_length:
            raise ValidationError(f"Password must be at least {self.min_password_length} characters.")
        if len(password.encode("utf-8")) > _MAX_PASSWORD_BYTES:
            raise ValidationError(f"Password must be at most {_MAX_PASSWORD_BYTES} bytes.")

    def register(self, email: str, password: str, role: Role = Role.user) -> User:
        """Create a user without opening a session. Used by sign_up() and the CLI."""
        email = normalize_email(email)
        if not _EMAIL_RE.match(email) or len(email) > 255:
            raise ValidationError("Email address is invalid.")
        self._check_password(password)
        if self.users.get_by_email(email) is not None:
            raise ValidationError("Email address is already registered.")
        user = User(email=email, password_hash=hash_password(password), role=role)
        try:
            user.id = self.users.create_user(user)
        except IntegrityError:
            # Lost a race with a concurrent sign-up for the same address
            raise ValidationError("Email address is already registered.") from None
        logger.info("User registered: id=%s role=%s", user.id, user.role.value)
        return user

    def sign_up(self, email: str, password: str, ip_address: str = "", user_agent: str = "") -> AuthResult:
        user = self.register(email, password)
        return self._open_session(user, ip_address, user_agent)

    def sign_in(self, email: str, password: str, ip_address: str = "", user_agent: str = "") -> AuthResult:
        """Check credentials, open a session and mint a token.

        Raises InvalidCredentials for an unknown email and a wrong password
        alike, after the same amount of bcrypt work.
        """
        user = self.users.get_by_email(normalize_email(email))
        if user is None:
            equalize_timing(password or "")
            logger.warning("Sign-in failed from %s", ip_address or "unknown")
            raise InvalidCredentials()
        if not verify_password(password or "", user.password_hash):
            logger.warning("Sign-in failed from %s", ip_address or "unknown")
            raise InvalidCredentials()
        result = self._open_session(user, ip_address, user_agent)
        logger.info("User signed in: id=%s", user.id)
        return result

    def _open_session(self, user: User, ip_address: str, user_agent: str) -> AuthResult:
        session = self.sessions.create(user.id, ip_address=ip_address, user_agent=user_agent)
        token = self.tokens.sign(TokenIdentity(user_id=user.id, email=user.email))
        return AuthResult(user=user, session=session, token=token)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str, session_id: str | None = None) -> User:
        """Return the user a token speaks for. Raises InvalidToken otherwise."""
        identity = self.tokens.verify(token)
        user = self.users.get_by_id(identity.user_id)
        if user is None:
            raise InvalidToken()
        if self.verify_requires_session:
            if session_id:
                try:
                    session = self.sessions.find(session_id)
                except SessionNotFound:
                    raise InvalidToken() from None
                if session.user_id != user.id:
                    raise InvalidToken()
            elif self.sessions.count_live_for_user(user.id) == 0:
                raise InvalidToken()
        return user

    def refresh(self, session_id: str | None) -> AuthResult:
        """Mint a new token for a live session. Raises SessionNotFound."""
        session = self.sessions.find(session_id or "")
        user = self.users.get_by_id(session.user_id)
        if user is None:
            # FK cascade makes this unreachable unless the row is mid-delete
            raise SessionNotFound()
        self.sessions.touch(session.id)
        token = self.tokens.sign(TokenIdentity(user_id=user.id, email=user.email))
        return AuthResult(user=user, session=session, token=token)

    def resolve_user(self, token: str | None, session_id: str | None) -> User | None:
        """Token first, then session. None when neither identifies anyone."""
        if token:
            try:
                return self.verify(token, session_id)
            except InvalidToken:
                pass
        if session_id:
            try:
                session = self.sessions.find(session_id)
            except SessionNotFound:
                return None
            return self.users.get_by_id(session.user_id)
        return None

    # ------------------------------------------------------------------
    # Sign-out and password change
    # ------------------------------------------------------------------

    def sign_out(self, session_id: str | None, user_id: int | None = None) -> None:
        """Delete the session if it exists. Signing out twice is fine.

        With user_id, a session owned by someone else is left alone.
        """
        if not session_id:
            return
        if user_id is not None:
            session = self.live_session(session_id)
            if session is None or session.user_id != user_id:
                return
        if self.sessions.delete(session_id):
            logger.info("Session ended")

    def sign_out_everywhere(self, user_id: int) -> int:
        count = self.sessions.delete_all_for_user(user_id)
        logger.info("Revoked %d session(s) for user id=%s", count, user_id)
        return count

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        """Re-hash the password, void pending reset links and revoke every session.

        Raises InvalidCredentials if current_password is wrong, ValidationError
        if new_password is too short.
        """
        if not verify_password(current_password or "", user.password_hash):
            raise InvalidCredentials("Current password is incorrect.")
        self._check_password(new_password)
        user.password_hash = hash_password(new_password)
        self.users.update_user(user.id, password_hash=user.password_hash)
        logger.info("Password changed for user id=%s", user.id)
        self.resets.delete_all_for_user(user.id)
        self.sign_out_everywhere(user.id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> None:
        """Issue a reset token and hand it to reset_notifier.

        Returns nothing either way: callers answer identically whether or not
        the email is registered.
        """
        user = self.users.get_by_email(normalize_email(email))
        if user is None:
            logger.info("Password reset requested for an unregistered email")
            return
        raw_token = generate_reset_token()
        expires_at = self.resets.create(user.id, self.tokens.digest(raw_token))
        logger.info("Password reset issued for user id=%s", user.id)
        self.reset_notifier(user, raw_token, expires_at)

    def reset_password(self, token: str, new_password: str) -> User:
        """Set a new password from a reset token and revoke every session.

        The password is validated before the token is spent, so a rejected
        password leaves the link usable. Raises ValidationError or InvalidToken.
        """
        self._check_password(new_password)
        user_id = self.resets.consume(self.tokens.digest(token or ""))
        user = self.users.get_by_id(user_id) if user_id is not None else None
        if user is None:
            raise InvalidToken("Reset link is invalid or has expired.")
        user.password_hash = hash_password(new_password)
        self.users.update_user(user.id, password_hash=user.password_hash)
        logger.info("Password reset completed for user id=%s", user.id)
        self.sign_out_everywhere(user.id)
        return user

    def live_session(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        try:
            return self.sessions.find(session_id)
        except SessionNotFound:
            return None
