"""
web/routes.py -- Jinja2 template routes for the Passport sign-in pages.

These routes serve server-rendered HTML. They share app.state with the API
routes (same stores, services and limiter) but return HTML or redirects
instead of JSON.

Routes:
  GET  /          -- signed-in landing page (redirects to /sign_in)
  GET  /sign_in   -- sign-in form
  POST /sign_in   -- handle sign-in (rate-limited, CSRF)
  GET  /sign_up   -- registration form
  POST /sign_up   -- handle registration (rate-limited, CSRF)
  POST /sign_out  -- end the session (CSRF)

CSRF: every form carries a hidden _csrf field whose value is also inside the
signed csrf_token cookie. A POST whose field does not match fails with a
plain 403. The token is rotated after every successful check.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlsplit

from fastapi import APIRouter, Depends, Form, Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.csrf import CSRF_COOKIE_NAME, CSRF_FIELD_NAME, CSRF_HEADER_NAME
from auth.dependencies import client_ip, enforce_rate_limit, try_get_current_user
from auth.errors import CSRFMismatch, InvalidCredentials, ValidationError
from auth.models import AuthResult
from auth.service import AuthService

logger = logging.getLogger("passport.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /sign_in.
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "invalid_credentials": "Invalid email or password.",
    "signed_out": "You have been signed out.",
}


def _safe_next(next_url: Optional[str], cookie_domain: str = "") -> str:
    """Validate a post-sign-in redirect target.

    Accepted:
      - relative paths ("/dashboard"), but not protocol-relative ("//evil")
      - absolute http(s) URLs whose host is the cookie parent domain or one
        of its subdomains, so sibling apps can send users back after SSO

    Anything else falls back to "/".
    """
    if not next_url or "\\" in next_url:
        return "/"
    if next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    parent = cookie_domain.lstrip(".").lower()
    if not parent:
        return "/"
    parts = urlsplit(next_url)
    host = (parts.hostname or "").lower()
    if parts.scheme in ("http", "https") and (host == parent or host.endswith("." + parent)):
        return next_url
    return "/"


def _next_param(request: Request) -> str:
    return request.query_params.get("next", "")


def _csrf_token(request: Request) -> str:
    """Token for the form being rendered: reuse the cookie's if still valid."""
    return request.app.state.csrf.current(request.cookies.get(CSRF_COOKIE_NAME))


def _check_csrf(request: Request, submitted: Optional[str]) -> None:
    csrf = request.app.state.csrf
    submitted = submitted or request.headers.get(CSRF_HEADER_NAME)
    if not csrf.verify(request.cookies.get(CSRF_COOKIE_NAME), submitted):
        logger.warning("CSRF check failed on %s from %s", request.url.path, client_ip(request))
        raise CSRFMismatch()


def _render(request: Request, name: str, context: dict, status_code: int = 200) -> HTMLResponse:
    token = _csrf_token(request)
    resp = templates.TemplateResponse(
        request,
        name,
        {"csrf_field": CSRF_FIELD_NAME, "csrf_token": token, **context},
        status_code=status_code,
    )
    request.app.state.csrf.set_cookie(resp, token)
    return resp


def _signed_in_redirect(request: Request, result: AuthResult, next_url: str) -> RedirectResponse:
    resp = RedirectResponse(next_url, status_code=302)
    request.app.state.cookies.set_auth_cookies(resp, result.session, result.token)
    # Rotate after a successful check
    request.app.state.csrf.set_cookie(resp, request.app.state.csrf.issue())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> Response:
    user = try_get_current_user(request)
    if user is None:
        return RedirectResponse("/sign_in?next=/", status_code=302)
    return _render(request, "home.html", {"user": user})


@router.get("/sign_in", response_class=HTMLResponse)
def sign_in_form(request: Request) -> Response:
    """Render the sign-in form. Already signed-in users go straight to next."""
    cookie_domain = request.app.state.settings.cookie_domain
    next_url = _safe_next(_next_param(request), cookie_domain)
    if try_get_current_user(request) is not None:
        return RedirectResponse(next_url, status_code=302)
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)
    return _render(request, "sign_in.html", {"error_msg": error_msg, "next_url": next_url})


@router.post(
    "/sign_in",
    response_class=HTMLResponse,
    dependencies=[Depends(enforce_rate_limit("web.sign_in"))],
)
def sign_in_post(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    next: str = Form(""),
    csrf_value: Optional[str] = Form(None, alias=CSRF_FIELD_NAME),
) -> RedirectResponse:
    """Handle the sign-in form. Failures redirect back with a whitelisted error code."""
    _check_csrf(request, csrf_value)
    service: AuthService = request.app.state.auth_service
    next_url = _safe_next(next or _next_param(request), request.app.state.settings.cookie_domain)
    try:
        result = service.sign_in(
            email,
            password,
            ip_address=client_ip(request),
            user_agent=request.headers.get("User-Agent", ""),
        )
    except InvalidCredentials:
        return RedirectResponse(
            f"/sign_in?error=invalid_credentials&next={quote(next_url, safe='')}",
            status_code=302,
        )
    return _signed_in_redirect(request, result, next_url)


@router.get("/sign_up", response_class=HTMLResponse)
def sign_up_form(request: Request) -> Response:
    if try_get_current_user(request) is not None:
        return RedirectResponse("/", status_code=302)
    return _render(request, "sign_up.html", {"error_msg": None, "email": ""})


@router.post(
    "/sign_up",
    response_class=HTMLResponse,
    dependencies=[Depends(enforce_rate_limit("web.sign_up"))],
)
def sign_up_post(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    password_confirmation: str = Form(""),
    csrf_value: Optional[str] = Form(None, alias=CSRF_FIELD_NAME),
) -> Response:
    """Register and sign in. Invalid input re-renders the form with a 422."""
    _check_csrf(request, csrf_value)
    service: AuthService = request.app.state.auth_service
    if password != password_confirmation:
        return _render(
            request,
            "sign_up.html",
            {"error_msg": "Passwords do not match.", "email": email},
            status_code=422,
        )
    try:
        result = service.sign_up(
            email,
            password,
            ip_address=client_ip(request),
            user_agent=request.headers.get("User-Agent", ""),
        )
    except ValidationError as exc:
        # exc.message comes from AuthService, never from the request
        return _render(
            request,
            "sign_up.html",
            {"error_msg": exc.message, "email": email},
            status_code=422,
        )
    return _signed_in_redirect(request, result, "/")


@router.post("/sign_out")
def sign_out(
    request: Request,
    csrf_value: Optional[str] = Form(None, alias=CSRF_FIELD_NAME),
) -> RedirectResponse:
    """End the browser session and clear every auth cookie."""
    _check_csrf(request, csrf_value)
    cookies = request.app.state.cookies
    request.app.state.auth_service.sign_out(cookies.read_session_id(request))
    resp = RedirectResponse("/sign_in?error=signed_out", status_code=302)
    cookies.clear_auth_cookies(resp)
    request.app.state.csrf.set_cookie(resp, request.app.state.csrf.issue())
    return resp
