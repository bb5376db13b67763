"""
api/main.py -- FastAPI application entry point for Passport.

Exposes the SSO authentication core over HTTP. Sibling applications on the
parent domain call /api/auth/verify with a user's token; browsers sign in
through the HTML forms mounted by asgi.py.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- credentialed CORS for origins under the cookie domain
  3. log_requests          -- one access-log line per request

Lifespan builds every auth component once and stores it on app.state, then
starts the expired-session cleanup task. Shutdown cancels the task and
disposes the engine.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from auth.admin import AdminService
from auth.cookies import CookieManager
from auth.csrf import CSRFGuard
from auth.dependencies import get_current_user
from auth.errors import AuthError, RateLimited
from auth.models import User
from auth.ratelimit import RateLimiter
from auth.service import AuthService, ResetNotifier
from auth.store import PasswordResetStore, SessionStore, UserStore
from auth.tokens import TokenService
from core.config import Settings, get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("passport.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def init_state(
    app: FastAPI,
    settings: Settings,
    user_store: Optional[UserStore] = None,
    reset_notifier: Optional[ResetNotifier] = None,
) -> None:
    """Build every auth component and attach it to app.state.

    user_store may be passed in (tests use named in-memory databases);
    otherwise one is created from DATABASE_URL. Everything else derives from
    the store's engine and the settings. reset_notifier delivers password
    reset links (mail, queue); without one they are only logged as undelivered.
    """
    user_store = user_store or UserStore(settings.database_url)
    session_store = SessionStore(user_store.engine, ttl_seconds=settings.session_ttl_seconds)
    reset_store = PasswordResetStore(user_store.engine, ttl_seconds=settings.password_reset_ttl_seconds)
    tokens = TokenService(
        settings.secret_key_base,
        issuer=settings.jwt_issuer,
        lifetime_seconds=settings.token_lifetime_seconds,
    )
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.session_store = session_store
    app.state.reset_store = reset_store
    app.state.tokens = tokens
    app.state.rate_limiter = RateLimiter(
        limit=settings.rate_limit_signin,
        window_seconds=settings.rate_limit_signin_window_seconds,
    )
    app.state.csrf = CSRFGuard(settings.secret_key_base, secure=bool(settings.secure_cookies))
    app.state.cookies = CookieManager(
        settings.cookie_domain,
        secure=bool(settings.secure_cookies),
        max_age=settings.session_ttl_seconds,
    )
    app.state.auth_service = AuthService(
        user_store,
        session_store,
        tokens,
        min_password_length=settings.min_password_length,
        verify_requires_session=settings.verify_requires_session,
        resets=reset_store,
        reset_notifier=reset_notifier,
    )
    app.state.admin_service = AdminService(user_store, session_store)


# ---------------------------------------------------------------------------
# Background session cleanup
# ---------------------------------------------------------------------------


async def _cleanup_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired sessions and reset tokens every interval_seconds.

    The DELETE runs in a worker thread so the event loop is never blocked on
    the database. A failed sweep is logged and retried on the next tick;
    CancelledError from task.cancel() during shutdown ends the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await asyncio.to_thread(app.state.session_store.delete_expired)
            resets = await asyncio.to_thread(app.state.reset_store.delete_expired)
        except SQLAlchemyError:
            logger.exception("Expired-session cleanup failed")
            continue
        if removed or resets:
            logger.info("Removed %d expired session(s) and %d reset token(s)", removed, resets)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create components on startup, release them on shutdown.

    Startup order: stores first (the schema must exist before anything
    queries it), then services, then the cleanup task, which references
    app.state.session_store.
    """
    logger.info("Passport API starting up (environment=%s)", settings.environment)
    init_state(app, settings)
    logger.info(
        "Auth initialized (cookie_domain=%r, secure_cookies=%s, verify_requires_session=%s)",
        settings.cookie_domain,
        settings.secure_cookies,
        settings.verify_requires_session,
    )
    app.state.cleanup_task = asyncio.create_task(_cleanup_loop(app, settings.session_cleanup_interval_seconds))

    yield

    app.state.cleanup_task.cancel()
    app.state.user_store.close()
    logger.info("Passport API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Passport",
    description="Cross-domain SSO authentication: tokens, sessions, and admin controls.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by auth-protected routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=settings.cors_origin_regex or None,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Captures wall-clock time around call_next so every response is logged with
# its latency. Query strings are not logged: ?next= may carry return URLs.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Passport API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Passport API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# API responses share one ErrorResponse envelope so clients can parse errors
# uniformly. Non-API paths (the HTML forms) get a plain-text body instead.
# ---------------------------------------------------------------------------


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api/")


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse | PlainTextResponse:
    """Render an expected auth failure with its own status and code.

    RateLimited also carries Retry-After: seconds until the oldest attempt
    in the caller's window expires.
    """
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code == 401:
        headers["Cache-Control"] = "no-store"
    if not _is_api(request):
        return PlainTextResponse(exc.message, status_code=exc.status_code, headers=headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors, storage outages included.

    The traceback goes to the log only. The request is never authenticated
    on this path.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable. No rate limit --
# load balancer health checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return liveness, version and a database round-trip result."""
    try:
        request.app.state.user_store.ping()
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unavailable")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return JSONResponse(
        status_code=200 if database == "ok" else 503,
        content=HealthResponse(
            status=status,
            version=__version__,
            components={"app": "ok", "database": database},
        ).model_dump(),
    )
