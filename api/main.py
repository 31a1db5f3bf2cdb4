"""
api/main.py -- FastAPI application entry point for Portal.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware -- enforces per-IP rate limits from api.limiter

Lifespan opens the three stores (credentials, audit ledger, projects/tasks)
on one database URL and wires them into a single AuthorizationPipeline on
app.state. Shutdown disposes them symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse, validation_details
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.projects import router as projects_router
from audit.ledger import AuditLedger
from auth.pipeline import AuthorizationPipeline
from auth.store import UserStore
from core.config import get_settings
from core.errors import ErrorKind, PortalError
from tracker.store import TrackerStore

_VERSION = "1.0.0"
_GENERIC_ERROR = "An unexpected error occurred."

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("portal.api")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores and build the pipeline; dispose everything on shutdown.

    Startup order: credential store first (the pipeline cannot authenticate
    without it), then the ledger, then the project/task store that supplies
    ownership lookups.
    """
    logger.info("Portal API starting up")
    app.state.user_store = UserStore()
    app.state.ledger = AuditLedger()
    app.state.tracker = TrackerStore()
    app.state.pipeline = AuthorizationPipeline(app.state.user_store, app.state.ledger, app.state.tracker)
    if not app.state.user_store.has_users():
        logger.warning("No users exist yet. Create one with: python main.py create-user")
    logger.info("Stores initialized")

    yield

    app.state.tracker.close()
    app.state.ledger.close()
    app.state.user_store.close()
    logger.info("Portal API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Portal API",
    description="Multi-tenant project and task tracker with role-based access and an audit trail.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; wall-clock time around call_next gives the latency.
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(projects_router, prefix="/api/v1", tags=["Projects"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope
# ({"error": message, "code": kind, "details"?: [...]}) so API clients can
# parse errors uniformly.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, code: str, details: list | None = None) -> JSONResponse:
    body = ErrorResponse(error=message, code=code, details=details).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    """Render a classified failure with the status its kind maps to."""
    details = exc.details
    if exc.kind is ErrorKind.STORE_FAILURE and _settings.debug and exc.__cause__ is not None:
        details = [*(details or []), str(exc.__cause__)]
    return _error(exc.status_code, exc.message, exc.kind.value, details)


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded.

    Retry-After is the length of the exceeded window (fixed-window limits
    reset at most that far ahead).

    Plain def: SlowAPIMiddleware calls the registered handler without
    awaiting it.
    """
    retry_after = exc.limit.limit.get_expiry()
    response = _error(429, "Too many requests, please try again later.", ErrorKind.RATE_LIMITED.value)
    response.headers["Retry-After"] = str(retry_after)
    return response


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input is a 400 with the per-field errors in details."""
    return _error(400, "Validation failed", ErrorKind.VALIDATION_FAILED.value, validation_details(exc.errors()))


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Storage errors raised outside the pipeline's execute stage."""
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    details = [str(exc)] if _settings.debug else None
    return _error(500, _GENERIC_ERROR, ErrorKind.STORE_FAILURE.value, details)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log. The response body carries the exception
    text only when DEBUG is on.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    details = [str(exc)] if _settings.debug else None
    return _error(500, _GENERIC_ERROR, "internal_error", details)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Exempt from rate limiting --
# health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database round-trip check."""
    components = {"app": "ok", "database": "ok"}
    try:
        with request.app.state.user_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=_VERSION, components=components)
