"""
api/routes/v1/search.py -- Search endpoints (public).

Routes (mounted under API_PREFIX, default /api):
  GET /search?q&page&limit                  -- provinces + municipalities in one result
  GET /search/provinces?q&page&limit        -- provinces only, with totals
  GET /search/municipalities?q&page&limit   -- municipalities only, with totals

q must be at least 2 characters after trimming. The length check lives in
geo/service.normalize_term() rather than in Query(min_length=...) because
"  a " passes a raw length check but is a single character once trimmed.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.context import AppContext, get_context
from api.models import MAX_LIMIT, MAX_PAGE

router = APIRouter()


@router.get("/search")
def search(
    q: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    ctx: AppContext = Depends(get_context),
) -> JSONResponse:
    """Search both entity types. limit is split: ceil(limit/2) provinces, floor(limit/2) municipalities."""
    return JSONResponse(content=ctx.service.search(q, page=page, limit=limit))


@router.get("/search/provinces")
def search_provinces(
    q: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(15, ge=1, le=MAX_LIMIT),
    ctx: AppContext = Depends(get_context),
) -> JSONResponse:
    return JSONResponse(content=ctx.service.search_provinces(q, page=page, limit=limit))


@router.get("/search/municipalities")
def search_municipalities(
    q: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(15, ge=1, le=MAX_LIMIT),
    ctx: AppContext = Depends(get_context),
) -> JSONResponse:
    return JSONResponse(content=ctx.service.search_municipalities(q, page=page, limit=limit))
