"""
api/main.py -- FastAPI application entry point for the account service.

Exposes the credential and reset-token engine over HTTP. The routing layer
owns the session cookie; the core managers own everything else.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- signed cookie holding the logged-in user id

Lifespan builds the store, the two managers and the mailer on startup and
disposes the store's engine on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.credentials import CredentialManager
from auth.dependencies import get_current_user
from auth.errors import (
    AccountError,
    CredentialIntegrityError,
    DuplicateEmail,
    InvalidCredentials,
    InvalidOrExpiredToken,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from auth.models import UserRecord
from auth.reset import ResetTokenManager
from auth.store import UserStore
from core.config import get_settings
from mail.mailer import get_mailer

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("accounts.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    The managers share one store; all three are stateless apart from it, so
    one instance each serves every request thread.
    """
    logger.info("Account service starting up")
    store = UserStore(_settings.database_url, timeout=_settings.store_timeout_seconds)
    app.state.user_store = store
    app.state.credentials = CredentialManager(store)
    app.state.resets = ResetTokenManager(store)
    app.state.mailer = get_mailer(_settings)
    logger.info(
        "Account store initialized (bcrypt_rounds=%d, reset_ttl=%ds, mail_backend=%s)",
        _settings.bcrypt_rounds,
        _settings.reset_token_ttl_seconds,
        _settings.mail_backend,
    )

    yield

    app.state.user_store.close()
    logger.info("Account service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Account Service API",
    description="Registration, password login, and password reset by emailed token.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by session-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI -> Session.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    max_age=_settings.session_max_age_seconds,
    same_site="lax",
    https_only=_settings.secure_cookies,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
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

app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: UserRecord = Depends(get_current_user)):
    """Swagger UI -- requires a logged-in session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Account Service API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: UserRecord = Depends(get_current_user)):
    """ReDoc UI -- requires a logged-in session."""
    return get_redoc_html(openapi_url="/openapi.json", title="Account Service API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_ACCOUNT_ERROR_STATUS: dict[type[AccountError], int] = {
    ValidationError: 422,
    DuplicateEmail: 409,
    InvalidCredentials: 401,
    InvalidOrExpiredToken: 401,
    NotFound: 404,
    StoreUnavailable: 503,
}


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    """Map a core error kind to its status code.

    The message comes from the error class, never from a lower-level cause,
    so InvalidCredentials / InvalidOrExpiredToken bodies are byte-identical
    whatever actually failed.
    """
    status_code = _ACCOUNT_ERROR_STATUS.get(type(exc), 400)
    detail = exc.field if isinstance(exc, ValidationError) else None
    response = _error_response(status_code, exc.code, exc.message, detail)
    if isinstance(exc, StoreUnavailable):
        response.headers["Retry-After"] = "1"
    if isinstance(exc, (InvalidCredentials, InvalidOrExpiredToken)):
        response.headers["Cache-Control"] = "no-store"  # [M5]
    return response


@app.exception_handler(CredentialIntegrityError)
async def integrity_error_handler(request: Request, exc: CredentialIntegrityError) -> JSONResponse:
    """Corrupt credential data: log loudly, answer with a generic 500."""
    logger.error("Credential integrity error on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response(500, exc.code, "An unexpected error occurred.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or path params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a {"code", "message"} dict as
    detail; use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and account store reachability."""
    database_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
