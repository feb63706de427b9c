"""
api/main.py -- FastAPI application entry point for the admin auth service.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (store + guard, blacklist purge task) and shutdown
(cancel purge task, dispose engine) symmetrically.

Every error leaves this app in the same Envelope shape the routes use:
    {"message": str, "data": {}, "error": code-or-field-errors, "status": false}
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import Envelope, HealthResponse
from api.routes.v1.admin_auth import router as admin_auth_router
from auth.dependencies import require_admin
from auth.guard import AdminGuard, AuthProviderError
from auth.models import Admin
from auth.store import AdminStore
from core.config import get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("adminauth.api")

_settings = get_settings()

_PURGE_INTERVAL_SECONDS = 6 * 60 * 60

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop blacklist rows whose refresh window has closed, every 6 hours.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        removed = await asyncio.to_thread(app.state.store.purge_expired_tokens)
        logger.info("Purged %d expired blacklist entries", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The store must exist before the guard and the purge task.
    """
    logger.info("Admin auth API starting up")
    app.state.store = AdminStore(_settings.database_url)
    app.state.guard = AdminGuard(app.state.store, _settings)
    logger.info(
        "Auth initialized (ttl=%dm, refresh_ttl=%dm, blacklist=%s)",
        _settings.jwt_ttl_minutes,
        _settings.jwt_refresh_ttl_minutes,
        _settings.jwt_blacklist_enabled,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.store.close()
    logger.info("Admin auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Admin Auth API",
    description="JWT authentication for administrator accounts.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below with admin-only routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order the request should encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Captures wall-clock time around call_next so every response is logged
# with its latency. Never logs headers -- they carry bearer tokens.
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

app.include_router(admin_auth_router, prefix="/api/v1", tags=["Admin Auth"])


# ---------------------------------------------------------------------------
# Admin-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(admin: Admin = Depends(require_admin)):
    """Swagger UI -- requires an admin token."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Admin Auth API")


@app.get("/redoc", include_in_schema=False)
async def redoc(admin: Admin = Depends(require_admin)):
    """ReDoc UI -- requires an admin token."""
    return get_redoc_html(openapi_url="/openapi.json", title="Admin Auth API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the Envelope so API clients can parse every response
# with one schema.
# ---------------------------------------------------------------------------


def _envelope_error(status_code: int, error, message: str = "") -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=Envelope(message=message, data={}, error=error, status=False).model_dump(),
    )


def _field_errors(exc: RequestValidationError) -> dict[str, list[str]]:
    """Group pydantic errors by field name: {"email": ["..."], "password": ["..."]}."""
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "body"
        msg = str(err.get("msg", "Invalid value."))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]
        errors.setdefault(field, []).append(msg)
    return errors


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded.

    Retry-After is the length of the limit's window (60 for "10/minute").
    """
    retry_after = exc.limit.limit.get_expiry() if exc.limit is not None else 60
    response = _envelope_error(429, "rate_limited", message="Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field messages when the request body fails validation."""
    return _envelope_error(400, _field_errors(exc), message="Validation failed.")


@app.exception_handler(AuthProviderError)
async def auth_provider_error_handler(request: Request, exc: AuthProviderError) -> JSONResponse:
    """The guard's backing store failed. Surfaced as 401 with the provider's message."""
    logger.error("Auth provider failure on %s %s: %s", request.method, request.url.path, exc.__cause__ or exc)
    return _envelope_error(401, str(exc), message="Authentication failed.")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope for HTTPException, including routing 404/405.

    Route handlers raise HTTPException with detail={"code", "message"}; a
    plain string detail becomes both the message and an http_<status> code.
    """
    if isinstance(exc.detail, dict):
        response = _envelope_error(exc.status_code, exc.detail.get("code", ""), exc.detail.get("message", ""))
    else:
        response = _envelope_error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _envelope_error(500, "internal_error", message="An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
