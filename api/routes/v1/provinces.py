"""
api/routes/v1/provinces.py -- Province REST endpoints.

Routes (mounted under API_PREFIX, default /api):
  GET    /provinces                          -- paged list; search, region, sort, order
  GET    /provinces/{id}                     -- single province
  GET    /provinces/{id}/municipalities      -- paged municipalities of one province
  POST   /provinces                          -- create (ADMIN/OWNER)
  PUT    /provinces/{id}                     -- partial update (ADMIN/OWNER)
  DELETE /provinces/{id}                     -- delete; rejected while referenced (ADMIN/OWNER)

Reads go through GeoService and the read-through cache; writes invalidate it.
Query validation (page >= 1, 1 <= limit <= 100, search >= 2 chars, sort and
order allow-lists, UUID ids) happens in the signature, so a bad value is a
400 before any cache or store access.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.context import AppContext, get_context
from api.models import MAX_LIMIT, MAX_PAGE, MunicipalitySort, ProvinceCreate, ProvinceSort, ProvinceUpdate, SortOrder
from auth.dependencies import require_admin
from auth.models import User

# Auth policy:
# - GET    /provinces...:       public
# - POST/PUT/DELETE /provinces: require_admin (ADMIN or OWNER)
router = APIRouter()


@router.get("/provinces")
def list_provinces(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(15, ge=1, le=MAX_LIMIT),
    search: Optional[str] = Query(None, min_length=2),
    region: Optional[str] = Query(None, min_length=2),
    sort: ProvinceSort = Query("name"),
    order: SortOrder = Query("asc"),
    ctx: AppContext = Depends(get_context),
) -> JSONResponse:
    """List provinces with pagination, search and sorting."""
    body = ctx.service.list_provinces(page=page, limit=limit, search=search, region=region, sort=sort, order=order)
    return JSONResponse(content=body)


@router.get("/provinces/{province_id}")
def get_province(province_id: uuid.UUID, ctx: AppContext = Depends(get_context)) -> JSONResponse:
    return JSONResponse(content=ctx.service.get_province(str(province_id)))


@router.get("/provinces/{province_id}/municipalities")
def list_province_municipalities(
    province_id: uuid.UUID,
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(15, ge=1, le=MAX_LIMIT),
    search: Optional[str] = Query(None, min_length=2),
    sort: MunicipalitySort = Query("name"),
    order: SortOrder = Query("asc"),
    ctx: AppContext = Depends(get_context),
) -> JSONResponse:
    """List the municipalities that belong to one province. 404 if the province does not exist."""
    body = ctx.service.list_province_municipalities(
        str(province_id), page=page, limit=limit, search=search, sort=sort, order=order
    )
    return JSONResponse(content=body)


@router.post("/provinces", status_code=201)
def create_province(
    body: ProvinceCreate,
    ctx: AppContext = Depends(get_context),
    user: User = Depends(require_admin),
) -> JSONResponse:
    """Create a province. 409 if the code is already taken."""
    return JSONResponse(status_code=201, content=ctx.service.create_province(body.to_domain()))


@router.put("/provinces/{province_id}")
def update_province(
    province_id: uuid.UUID,
    body: ProvinceUpdate,
    ctx: AppContext = Depends(get_context),
    user: User = Depends(require_admin),
) -> JSONResponse:
    """Partially update a province.

    Changing the code of a province that still has municipalities is rejected
    with FOREIGN_KEY_VIOLATION.
    """
    return JSONResponse(content=ctx.service.update_province(str(province_id), body.changes()))


@router.delete("/provinces/{province_id}")
def delete_province(
    province_id: uuid.UUID,
    ctx: AppContext = Depends(get_context),
    user: User = Depends(require_admin),
) -> JSONResponse:
    """Delete a province. Rejected with FOREIGN_KEY_VIOLATION while municipalities reference it."""
    return JSONResponse(content=ctx.service.delete_province(str(province_id)))
