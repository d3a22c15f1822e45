"""
api/main.py -- FastAPI application entry point for the Angola geo API.

Serves provinces, municipalities, search, stats and auth under API_PREFIX
(default /api), plus an unprefixed /health liveness check.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for CORS_ORIGIN
  2. SlowAPIMiddleware  -- enforces RATE_LIMIT everywhere, AUTH_RATE_LIMIT on login
  3. log_requests       -- one access-log line per request

Lifespan builds the AppContext (stores, cache, service) and the cache purge
task on startup, and tears both down on shutdown.

Every error leaves through one of the exception handlers below as
  {success: false, message, error: {code, message, details?}, timestamp}
details is never sent when ENVIRONMENT=production.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.context import build_context
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.municipalities import router as municipalities_router
from api.routes.v1.provinces import router as provinces_router
from api.routes.v1.search import router as search_router
from api.routes.v1.stats import router as stats_router
from core.config import get_settings
from core.errors import AppError, TooManyRequests

VERSION = "1.0.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("angolageo.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired cache entries every CACHE_PURGE_INTERVAL_SECONDS.

    Runs as a background asyncio task started in lifespan startup.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. A failed purge is logged
    and retried on the next tick.
    """
    while True:
        await asyncio.sleep(app.state.ctx.settings.cache_purge_interval_seconds)
        try:
            removed = app.state.ctx.cache_backend.purge_expired()
            logger.info("Cache purge removed %d expired entries", removed)
        except Exception:
            logger.warning("Cache purge failed", exc_info=True)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The context must exist before the purge task references it.
    """
    logger.info("Angola geo API starting up (environment=%s)", settings.environment)
    app.state.ctx = build_context(settings)
    logger.info("Stores and cache initialized")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.ctx.close()
    logger.info("Angola geo API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Angola Geo API",
    description="Províncias e municípios de Angola: listagem, busca, estatísticas e autenticação.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=None,
    openapi_url=f"{settings.api_prefix}/openapi.json",
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler. We capture wall-clock time
# before and after call_next so we can report latency on every response.
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
        _client_ip(request),
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(provinces_router, prefix=settings.api_prefix, tags=["Provinces"])
app.include_router(municipalities_router, prefix=settings.api_prefix, tags=["Municipalities"])
app.include_router(search_router, prefix=settings.api_prefix, tags=["Search"])
app.include_router(auth_router, prefix=settings.api_prefix, tags=["Auth"])
app.include_router(stats_router, prefix=settings.api_prefix, tags=["Stats"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _error(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    if settings.is_production:
        details = None
    body = ErrorResponse(
        message=message,
        error=ErrorDetail(code=code, message=message, details=details),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render the application error taxonomy (core/errors.py)."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.code, exc.message, exc.details)


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Plain def, not async: SlowAPIMiddleware calls this handler directly when
    the limit trips before routing.

    Retry-After tells clients how many seconds to wait before retrying; it is
    derived from the window of the limit that was hit.
    """
    logger.warning(
        "Rate limit exceeded ip=%s path=%s method=%s limit=%s",
        _client_ip(request),
        request.url.path,
        request.method,
        exc.detail,
    )
    limit = getattr(exc, "limit", None)
    retry_after: Optional[int] = None
    if limit is not None and getattr(limit, "limit", None) is not None:
        retry_after = int(limit.limit.get_expiry())
    err = TooManyRequests(details=str(exc.detail))
    response = _error(err.status_code, err.code, err.message, err.details)
    response.headers["Retry-After"] = str(retry_after or 60)
    return response


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one {field, message} entry per failing input."""
    details = []
    for err in exc.errors():
        # loc is ("query", "limit") / ("body", "email") / ("path", "province_id")
        field = ".".join(str(p) for p in err.get("loc", ())[1:])
        details.append({"field": field, "message": err.get("msg", "")})
    return _error(400, "VALIDATION_ERROR", "Dados de entrada inválidos", details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope for routing 404/405 and any HTTPException raised by Starlette itself."""
    if exc.status_code == 404:
        return _error(404, "NOT_FOUND", f"Rota {request.url.path} não encontrada")
    return _error(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only. In production
    the client receives a generic message with no details; elsewhere the
    exception text is included under error.details for debugging.
    """
    logger.exception(
        "Unhandled exception on %s %s ip=%s ua=%s",
        request.method,
        request.url.path,
        _client_ip(request),
        request.headers.get("User-Agent", ""),
    )
    return _error(500, "INTERNAL_ERROR", "Erro interno do servidor", str(exc))


# ---------------------------------------------------------------------------
# Health and info endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version. No store or cache access."""
    return HealthResponse(version=VERSION)


@app.get(settings.api_prefix, tags=["Info"])
async def api_info() -> dict:
    """List the resource entry points under API_PREFIX."""
    prefix = settings.api_prefix
    return {
        "success": True,
        "message": "API de Províncias e Municípios de Angola",
        "data": {
            "version": settings.api_version,
            "documentation": f"{prefix}/docs",
            "endpoints": {
                "provinces": f"{prefix}/provinces",
                "municipalities": f"{prefix}/municipalities",
                "search": f"{prefix}/search",
                "auth": f"{prefix}/auth",
                "stats": f"{prefix}/stats",
            },
        },
    }
