"""
api/routes/v1/stats.py -- Statistics, health and metrics endpoints (public).

Routes (mounted under API_PREFIX, default /api):
  GET /stats          -- entity counts, cached 1 h
  GET /stats/health   -- checks database and cache; 200 healthy, 503 otherwise
  GET /stats/metrics  -- distribution and top provinces, cached 5 min

/stats/health is exempt from rate limiting -- health checks from load
balancers and monitoring systems must not be throttled. It is never cached.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.context import AppContext, get_context
from api.limiter import limiter

logger = logging.getLogger("angolageo.api")

router = APIRouter()

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


@router.get("/stats")
def stats(ctx: AppContext = Depends(get_context)) -> JSONResponse:
    return JSONResponse(content=ctx.service.stats())


def _check_database(ctx: AppContext) -> str:
    try:
        ctx.geo.ping()
        ctx.users.ping()
    except Exception:
        logger.error("Database health check failed", exc_info=True)
        return UNHEALTHY
    return HEALTHY


@limiter.exempt
@router.get("/stats/health")
def health(ctx: AppContext = Depends(get_context)) -> JSONResponse:
    """Check both stores (SELECT 1) and the cache (EXISTS)."""
    services = {
        "database": _check_database(ctx),
        "cache": HEALTHY if ctx.cache.healthy() else UNHEALTHY,
    }
    overall = HEALTHY if all(s == HEALTHY for s in services.values()) else UNHEALTHY
    body = {
        "success": overall == HEALTHY,
        "message": "API funcionando normalmente" if overall == HEALTHY else "API com problemas",
        "data": {
            "status": overall,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": ctx.settings.api_version,
            "environment": ctx.settings.environment,
            "uptime": ctx.service.uptime(),
            "services": services,
        },
    }
    return JSONResponse(status_code=200 if overall == HEALTHY else 503, content=body)


@router.get("/stats/metrics")
def metrics(ctx: AppContext = Depends(get_context)) -> JSONResponse:
    return JSONResponse(content=ctx.service.metrics())
