"""
api/main.py -- FastAPI application entry point for expertsman.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan owns the one database engine and every component built on it
(store, auth rate limiter, audit log, retention sweeper). Components receive
the engine through their constructors and are reachable by handlers through
app.state (see api/state.py). Startup also seeds the protected default
workspace and starts the retention loop; shutdown tears everything down in
reverse.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.experts import router as experts_router
from api.routes.v1.master import public_router as master_public_router
from api.routes.v1.master import router as master_router
from api.routes.v1.requests import router as requests_router
from api.routes.v1.workspaces import router as workspaces_router
from auth.passwords import hash_password
from auth.ratelimit import AuthRateLimiter
from core.config import get_settings
from core.database import create_db_engine
from core.errors import RateLimited, ServiceError
from workspace.audit import AuditLog
from workspace.retention import RetentionSweeper, retention_loop
from workspace.store import WorkspaceStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("expertsman.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine first -- every component below takes it in its constructor.
      2. Store, then the protected workspace seed, which needs the store.
      3. Audit writer thread, so the first request can already be audited.
      4. Retention task last -- references the store and the rate limiter.
    """
    logger.info("expertsman API starting up")
    engine = create_db_engine(_settings.database_url)
    app.state.engine = engine
    app.state.store = WorkspaceStore(engine)
    app.state.rate_limiter = AuthRateLimiter(engine)
    app.state.audit = AuditLog(engine, max_queue=_settings.audit_queue_size)
    app.state.sweeper = RetentionSweeper(app.state.store, app.state.rate_limiter, _settings.retention_years)

    protected = app.state.store.ensure_protected_tenant(
        _settings.protected_tenant_slug,
        _settings.default_tenant_name,
        hash_password(_settings.default_tenant_password),
    )
    logger.info("Protected workspace ready (slug=%s)", protected.slug)

    app.state.audit.start()

    app.state.retention_task = None
    if _settings.retention_enabled:
        app.state.retention_task = asyncio.create_task(
            retention_loop(app.state.sweeper, _settings.retention_interval_seconds)
        )
        logger.info(
            "Retention sweep scheduled every %ds (retention %d years)",
            _settings.retention_interval_seconds,
            _settings.retention_years,
        )

    yield

    # Shutdown
    if app.state.retention_task is not None:
        app.state.retention_task.cancel()
    app.state.audit.close()
    engine.dispose()
    logger.info("expertsman API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="expertsman API",
    description="Multi-tenant expert scheduling: workspaces, candidate-slot polls and confirmation workflow.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "X-Master-Token", "X-Workspace-Token", "X-Expert-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Captures wall-clock time around call_next to report latency on every
# response. Headers are never logged: they carry bearer tokens.
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

app.include_router(master_public_router, prefix="/api/v1", tags=["Master"])
app.include_router(master_router, prefix="/api/v1", tags=["Master"])
app.include_router(requests_router, prefix="/api/v1", tags=["Workspace requests"])
app.include_router(workspaces_router, prefix="/api/v1", tags=["Workspaces"])
app.include_router(experts_router, prefix="/api/v1", tags=["Experts"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Map the core.errors family to its status code and stable error code."""
    response = _error(exc.status_code, exc.code, exc.message, exc.detail)
    if isinstance(exc, RateLimited):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when the coarse slowapi per-IP throttle trips."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", f"Too many requests. Try again in {retry_after} seconds.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when request body or query params fail validation."""
    return _error(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (unknown routes, 405s)."""
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Unexpected database failure. Details stay in the server log."""
    logger.exception("Storage error on %s %s", request.method, request.url.path)
    return _error(500, "storage_error", "A storage error occurred.")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        request.app.state.store.ping()
        database = "ok"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
