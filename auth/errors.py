"""
auth/errors.py -- Expected, caller-recoverable authentication failures.

Every class carries the HTTP status and the stable error code the API layer
renders. None of these is fatal to the process; storage failures are not
modelled here and surface as 500 through the generic handler.

Messages are deliberately generic. InvalidCredentials never says whether the
email exists, InvalidToken never says which check failed, SessionNotFound
never says whether the row was missing or expired.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for auth-layer errors mapped to HTTP responses."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid email or password."


class InvalidToken(AuthError):
    status_code = 401
    code = "invalid_token"
    default_message = "Invalid or expired token."


class SessionNotFound(AuthError):
    status_code = 401
    code = "session_not_found"
    default_message = "Session not found or expired."


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class CSRFMismatch(AuthError):
    status_code = 403
    code = "csrf_mismatch"
    default_message = "CSRF token validation failed."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Admin access required."


class ValidationError(AuthError):
    """Malformed registration input or a duplicate email."""

    status_code = 422
    code = "validation_error"
    default_message = "Invalid input."


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests."

    def __init__(self, retry_after: int = 0, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
