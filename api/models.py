"""
API request and response models for the Passport REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names here are camelCase where they are part of the cross-service wire
contract (userId); sibling services parse these payloads.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CredentialsRequest(BaseModel):
    """Request body for POST /api/auth/signin and /api/auth/signup.

    Length checks beyond the basic bounds (minimum password length, email
    shape, duplicates) belong to AuthService so API and HTML forms agree.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=256)


class VerifyRequest(BaseModel):
    """Request body for POST /api/auth/verify. The body is optional."""

    token: Optional[str] = Field(default=None, max_length=4096)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=256)


class PasswordResetRequest(BaseModel):
    """Request body for POST /api/auth/password/reset."""

    email: str = Field(min_length=1, max_length=255)


class PasswordResetConfirm(BaseModel):
    """Request body for POST /api/auth/password/reset/confirm."""

    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=256)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserPublic(BaseModel):
    """Identity payload shared by every SSO service."""

    model_config = ConfigDict(frozen=True)

    userId: int
    email: str
    role: str


class AuthResponse(BaseModel):
    """Response for signin / signup. The token is also set as a cookie."""

    user: UserPublic
    token: str


class VerifyResponse(BaseModel):
    valid: bool
    user: Optional[UserPublic] = None


class TokenResponse(BaseModel):
    """Response for POST /api/auth/refresh."""

    token: str


class MessageResponse(BaseModel):
    message: str


class CSRFTokenResponse(BaseModel):
    """Response for GET /api/auth/csrf. Echo csrfToken in X-CSRF-Token."""

    csrfToken: str


class SessionPublic(BaseModel):
    id: str
    userId: int
    ipAddress: str
    userAgent: str
    createdAt: str
    updatedAt: str


class RevokedResponse(BaseModel):
    revoked: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
