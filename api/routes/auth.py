"""
api/routes/auth.py -- SSO authentication REST endpoints.

Routes:
  POST   /api/auth/signin    -- credentials -> token + cookies (rate-limited)
  POST   /api/auth/signup    -- register + sign in (rate-limited)
  POST   /api/auth/verify    -- token -> {valid, user}
  POST   /api/auth/refresh   -- live session cookie -> new token
  GET    /api/auth/user      -- current identity (token or session)
  DELETE /api/auth/signout   -- revoke session, clear cookies (token or session)
  POST   /api/auth/password  -- change password, revoke every session
  GET    /api/auth/csrf      -- CSRF token for cookie-authenticated calls
  POST   /api/auth/password/reset          -- email a single-use reset link (rate-limited)
  POST   /api/auth/password/reset/confirm  -- token + new password (rate-limited)

Security:
  sign-in/sign-up go through enforce_rate_limit before any bcrypt work.
  AuthService.sign_in() provides timing equalization -- never inline
  get_by_email() + verify_password() here.
  Cache-Control: no-store on every response that carries a token.
  signout and password change run require_csrf_for_cookie_auth: a caller
  authenticated by cookie must send X-CSRF-Token (from GET /api/auth/csrf);
  a caller with a valid bearer token is exempt.
  The reset request answers the same for known and unknown emails.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    AuthResponse,
    CredentialsRequest,
    CSRFTokenResponse,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    TokenResponse,
    UserPublic,
    VerifyRequest,
    VerifyResponse,
)
from auth.csrf import CSRF_COOKIE_NAME
from auth.dependencies import (
    client_ip,
    enforce_rate_limit,
    get_auth_service,
    get_current_user,
    require_csrf_for_cookie_auth,
)
from auth.errors import InvalidToken
from auth.models import AuthResult, User
from auth.service import AuthService

# Auth policy:
# - POST   /api/auth/signin:   public, rate-limited
# - POST   /api/auth/signup:   public, rate-limited
# - POST   /api/auth/verify:   public -- sibling services call it with a user's token
# - POST   /api/auth/refresh:  requires a live session_id cookie
# - GET    /api/auth/user:     requires auth (get_current_user)
# - GET    /api/auth/csrf:     public
# - POST   /api/auth/password/reset[/confirm]: public, rate-limited
# - DELETE /api/auth/signout:  requires auth (get_current_user) + CSRF when cookie-authenticated
# - POST   /api/auth/password: requires auth (get_current_user) + CSRF when cookie-authenticated
router = APIRouter()

_RESET_REQUESTED = "If an account exists with this email, you will receive password reset instructions."


def _auth_response(request: Request, result: AuthResult) -> JSONResponse:
    resp = JSONResponse(
        content=AuthResponse(user=UserPublic(**result.user.to_public()), token=result.token).model_dump(),
    )
    request.app.state.cookies.set_auth_cookies(resp, result.session, result.token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signin", response_model=AuthResponse, dependencies=[Depends(enforce_rate_limit("api.signin"))])
def signin(
    request: Request,
    body: CredentialsRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password; set the SSO and session cookies.

    Unknown email and wrong password return the same 401 invalid_credentials.
    """
    result = service.sign_in(
        body.email,
        body.password,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent", ""),
    )
    return _auth_response(request, result)


@router.post("/auth/signup", response_model=AuthResponse, dependencies=[Depends(enforce_rate_limit("api.signup"))])
def signup(
    request: Request,
    body: CredentialsRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Register a new account and sign it in. Duplicate emails get 422."""
    result = service.sign_up(
        body.email,
        body.password,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent", ""),
    )
    return _auth_response(request, result)


@router.post("/auth/verify", response_model=VerifyResponse)
def verify(
    request: Request,
    body: Optional[VerifyRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Check a token for a sibling service.

    The token is taken from the JSON body, else the Authorization header,
    else the SSO cookie. Failure is 401 with valid=false; which check failed
    is never reported.
    """
    cookies = request.app.state.cookies
    token = (body.token if body is not None else None) or cookies.read_token(request)
    try:
        user = service.verify(token or "", cookies.read_session_id(request))
    except InvalidToken as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={"valid": False, "error": {"code": exc.code, "message": exc.message, "detail": None}},
        )
    return JSONResponse(
        content=VerifyResponse(valid=True, user=UserPublic(**user.to_public())).model_dump(),
    )


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Mint a new token for the live session in the session_id cookie."""
    cookies = request.app.state.cookies
    result = service.refresh(cookies.read_session_id(request))
    resp = JSONResponse(content=TokenResponse(token=result.token).model_dump())
    cookies.set_token_cookie(resp, result.token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/csrf", response_model=CSRFTokenResponse)
def csrf_token(request: Request) -> JSONResponse:
    """Return the CSRF token for cookie-authenticated API calls and set its cookie.

    Browser clients echo csrfToken in X-CSRF-Token on signout, password and
    admin requests. Reuses the token in a still-valid cookie.
    """
    csrf = request.app.state.csrf
    token = csrf.current(request.cookies.get(CSRF_COOKIE_NAME))
    resp = JSONResponse(content=CSRFTokenResponse(csrfToken=token).model_dump())
    csrf.set_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post(
    "/auth/password/reset",
    response_model=MessageResponse,
    dependencies=[Depends(enforce_rate_limit("api.password_reset"))],
)
def request_password_reset(
    body: PasswordResetRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Send a single-use reset link. The reply never reveals whether the email exists."""
    service.request_password_reset(body.email)
    return MessageResponse(message=_RESET_REQUESTED)


@router.post(
    "/auth/password/reset/confirm",
    response_model=MessageResponse,
    dependencies=[Depends(enforce_rate_limit("api.password_reset_confirm"))],
)
def confirm_password_reset(
    request: Request,
    body: PasswordResetConfirm,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Set a new password from a reset token. Every session of the user is revoked."""
    service.reset_password(body.token, body.new_password)
    resp = JSONResponse(content=MessageResponse(message="Password updated. Please sign in.").model_dump())
    request.app.state.cookies.clear_auth_cookies(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/user", response_model=UserPublic)
def current_user(user: User = Depends(get_current_user)) -> UserPublic:
    """Return the identity behind the token or session."""
    return UserPublic(**user.to_public())


@router.delete(
    "/auth/signout",
    response_model=MessageResponse,
    dependencies=[Depends(require_csrf_for_cookie_auth)],
)
def signout(
    request: Request,
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Delete the caller's session and clear every auth cookie.

    Already-issued tokens stay cryptographically valid until they expire but
    can no longer be refreshed.
    """
    cookies = request.app.state.cookies
    service.sign_out(cookies.read_session_id(request), user_id=user.id)
    resp = JSONResponse(content=MessageResponse(message="Signed out successfully").model_dump())
    cookies.clear_auth_cookies(resp)
    return resp


@router.post(
    "/auth/password",
    response_model=MessageResponse,
    dependencies=[Depends(require_csrf_for_cookie_auth)],
)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Change the caller's password. Every session, this one included, is revoked."""
    service.change_password(user, body.current_password, body.new_password)
    resp = JSONResponse(content=MessageResponse(message="Password updated. Please sign in again.").model_dump())
    request.app.state.cookies.clear_auth_cookies(resp)
    return resp
