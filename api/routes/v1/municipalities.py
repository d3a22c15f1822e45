"""
api/routes/v1/municipalities.py -- Municipality REST endpoints.

Routes (mounted under API_PREFIX, default /api):
  GET    /municipalities           -- paged list; search, province_code, region, sort, order
  GET    /municipalities/{id}      -- single municipality
  POST   /municipalities           -- create (ADMIN/OWNER); provinceCode must exist
  PUT    /municipalities/{id}      -- partial update (ADMIN/OWNER)
  DELETE /municipalities/{id}      -- delete (ADMIN/OWNER)
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.context import AppContext, get_context
from api.models import MAX_LIMIT, MAX_PAGE, MunicipalityCreate, MunicipalitySort, MunicipalityUpdate, SortOrder
from auth.dependencies import require_admin
from auth.models import User

router = APIRouter()


@router.get("/municipalities")
def list_municipalities(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(15, ge=1, le=MAX_LIMIT),
    search: Optional[str] = Query(None, min_length=2),
    province_code: Optional[str] = Query(None, min_length=2),
    region: Optional[str] = Query(None, min_length=2),
    sort: MunicipalitySort = Query("name"),
    order: SortOrder = Query("asc"),
    ctx: AppContext = Depends(get_context),
) -> JSONResponse:
    body = ctx.service.list_municipalities(
        page=page,
        limit=limit,
        search=search,
        province_code=province_code,
        region=region,
        sort=sort,
        order=order,
    )
    return JSONResponse(content=body)


@router.get("/municipalities/{municipality_id}")
def get_municipality(municipality_id: uuid.UUID, ctx: AppContext = Depends(get_context)) -> JSONResponse:
    return JSONResponse(content=ctx.service.get_municipality(str(municipality_id)))


@router.post("/municipalities", status_code=201)
def create_municipality(
    body: MunicipalityCreate,
    ctx: AppContext = Depends(get_context),
    user: User = Depends(require_admin),
) -> JSONResponse:
    """Create a municipality. 400 FOREIGN_KEY_VIOLATION if provinceCode names no province."""
    return JSONResponse(status_code=201, content=ctx.service.create_municipality(body.to_domain()))


@router.put("/municipalities/{municipality_id}")
def update_municipality(
    municipality_id: uuid.UUID,
    body: MunicipalityUpdate,
    ctx: AppContext = Depends(get_context),
    user: User = Depends(require_admin),
) -> JSONResponse:
    return JSONResponse(content=ctx.service.update_municipality(str(municipality_id), body.changes()))


@router.delete("/municipalities/{municipality_id}")
def delete_municipality(
    municipality_id: uuid.UUID,
    ctx: AppContext = Depends(get_context),
    user: User = Depends(require_admin),
) -> JSONResponse:
    return JSONResponse(content=ctx.service.delete_municipality(str(municipality_id)))
