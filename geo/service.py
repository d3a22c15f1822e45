"""
geo/service.py -- Cached query service for provinces, municipalities and search.

Sits between the HTTP routes and GeoStore. Every read builds a deterministic
cache key (cache/query.py build_key) from ALL of its parameters in a fixed
order, then goes through QueryCache.fetch(); the callable handed to fetch()
runs the store query and assembles the full response envelope, so a cache hit
returns exactly what the first request produced.

Every mutation goes straight to the store and then invalidates by tag:

  province create/update/delete      -> provinces, municipalities, search, stats
                                        + province:<id>
  municipality create/update/delete  -> municipalities, provinces, search, stats
                                        + municipality:<id>

Province mutations touch the municipalities tag because every municipality
response embeds a province summary; municipality mutations touch the
provinces tag because every province response carries municipalitiesCount.

Cache keys (None serializes as ""):
  provinces:<page>:<limit>:<search>:<region>:<sort>:<order>
  province:<id>
  province:<id>:municipalities:<page>:<limit>:<search>:<sort>:<order>
  municipalities:<page>:<limit>:<search>:<province_code>:<region>:<sort>:<order>
  municipality:<id>
  search:<q>:<page>:<limit>
  search:provinces:<q>:<page>:<limit>
  search:municipalities:<q>:<page>:<limit>
  api:stats
  api:metrics

Layer rule: no imports from api/ or auth/. No HTTP concerns here; errors are
raised as core.errors.AppError subclasses.
"""

from __future__ import annotations

import logging
import math
import platform
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic.alias_generators import to_camel

from cache.query import (
    DETAIL_TTL,
    LIST_TTL,
    METRICS_TTL,
    SEARCH_TTL,
    STATS_TTL,
    TAG_MUNICIPALITIES,
    TAG_PROVINCES,
    TAG_SEARCH,
    TAG_STATS,
    QueryCache,
    build_key,
)
from core.errors import NotFound, ValidationError
from geo.models import Municipality, Province
from geo.store import GeoStore

logger = logging.getLogger("angolageo.geo")

MIN_SEARCH_LENGTH = 2
STATS_NOTE = "Dados atualizados conforme nova divisão administrativa de Angola"

_PROVINCE_TAGS = (TAG_PROVINCES, TAG_MUNICIPALITIES, TAG_SEARCH, TAG_STATS)
_MUNICIPALITY_TAGS = (TAG_MUNICIPALITIES, TAG_PROVINCES, TAG_SEARCH, TAG_STATS)
_MUNICIPALITY_SEARCH_FIELDS = ("name", "code", "region")


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _to_public(entity: Province | Municipality) -> dict:
    data = {to_camel(k): v for k, v in asdict(entity).items()}
    data["coordinates"] = {"latitude": entity.latitude, "longitude": entity.longitude}
    data["stats"] = {"population": entity.population, "area": entity.area, "density": entity.density}
    return data


def province_to_dict(province: Province) -> dict:
    """camelCase response shape: stored fields + municipalitiesCount, coordinates, stats."""
    return _to_public(province)


def municipality_to_dict(municipality: Municipality) -> dict:
    """camelCase response shape: stored fields + province summary, coordinates, stats."""
    return _to_public(municipality)


def envelope(message: str, data: Any = None, meta: Optional[dict] = None) -> dict:
    body: dict = {"success": True, "message": message, "data": data}
    if meta is not None:
        body["meta"] = meta
    return body


def page_meta(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit)}


def normalize_term(q: Optional[str]) -> str:
    """Trim a search term; raise ValidationError if fewer than 2 chars remain."""
    term = (q or "").strip()
    if len(term) < MIN_SEARCH_LENGTH:
        raise ValidationError("Termo de busca deve ter pelo menos 2 caracteres")
    return term


def _skip(page: int, limit: int) -> int:
    return (page - 1) * limit


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class GeoService:
    """Read-through cached queries and cache-invalidating mutations.

    Usage:
        service = GeoService(GeoStore(url), QueryCache(create_cache(cache_url)))
        body = service.list_provinces(page=1, limit=15, search="lua")
    """

    def __init__(self, store: GeoStore, cache: QueryCache, api_version: str = "v1") -> None:
        self.store = store
        self.cache = cache
        self.api_version = api_version
        self.started_at = time.monotonic()

    # ------------------------------------------------------------------
    # Provinces
    # ------------------------------------------------------------------

    def list_provinces(
        self,
        page: int = 1,
        limit: int = 15,
        search: Optional[str] = None,
        region: Optional[str] = None,
        sort: str = "name",
        order: str = "asc",
    ) -> dict:
        key = build_key("provinces", page, limit, search, region, sort, order)

        def compute() -> dict:
            rows, total = self.store.list_provinces(
                search=search, region=region, sort=sort, order=order, skip=_skip(page, limit), take=limit
            )
            return envelope(
                "Províncias recuperadas com sucesso",
                [province_to_dict(p) for p in rows],
                page_meta(page, limit, total),
            )

        return self.cache.fetch(key, LIST_TTL, compute, tags=(TAG_PROVINCES,))

    def get_province(self, province_id: str) -> dict:
        def compute() -> dict:
            province = self.store.get_province(province_id)
            if province is None:
                raise NotFound("Província não encontrada")
            return envelope("Província recuperada com sucesso", province_to_dict(province))

        return self.cache.fetch(build_key("province", province_id), DETAIL_TTL, compute, tags=(TAG_PROVINCES,))

    def list_province_municipalities(
        self,
        province_id: str,
        page: int = 1,
        limit: int = 15,
        search: Optional[str] = None,
        sort: str = "name",
        order: str = "asc",
    ) -> dict:
        key = build_key("province", province_id, "municipalities", page, limit, search, sort, order)

        def compute() -> dict:
            province = self.store.get_province(province_id)
            if province is None:
                raise NotFound("Província não encontrada")
            rows, total = self.store.list_municipalities(
                search=search,
                province_code=province.code,
                sort=sort,
                order=order,
                skip=_skip(page, limit),
                take=limit,
            )
            return envelope(
                "Municípios da província recuperados com sucesso",
                [municipality_to_dict(m) for m in rows],
                page_meta(page, limit, total),
            )

        return self.cache.fetch(key, LIST_TTL, compute, tags=(TAG_PROVINCES, TAG_MUNICIPALITIES))

    def create_province(self, province: Province) -> dict:
        created = self.store.create_province(province)
        self._invalidate_province(created.id)
        logger.info("Province created id=%s code=%s", created.id, created.code)
        return envelope("Província criada com sucesso", province_to_dict(created))

    def update_province(self, province_id: str, fields: dict) -> dict:
        if not fields:
            raise ValidationError("Nenhum campo para atualizar")
        updated = self.store.update_province(province_id, **fields)
        self._invalidate_province(province_id)
        logger.info("Province updated id=%s fields=%s", province_id, sorted(fields))
        return envelope("Província atualizada com sucesso", province_to_dict(updated))

    def delete_province(self, province_id: str) -> dict:
        deleted = self.store.delete_province(province_id)
        self._invalidate_province(province_id)
        logger.info("Province deleted id=%s code=%s", province_id, deleted.code)
        return envelope("Província excluída com sucesso")

    def _invalidate_province(self, province_id: str) -> None:
        self.cache.invalidate(tags=_PROVINCE_TAGS, keys=[build_key("province", province_id)])

    # ------------------------------------------------------------------
    # Municipalities
    # ------------------------------------------------------------------

    def list_municipalities(
        self,
        page: int = 1,
        limit: int = 15,
        search: Optional[str] = None,
        province_code: Optional[str] = None,
        region: Optional[str] = None,
        sort: str = "name",
        order: str = "asc",
    ) -> dict:
        key = build_key("municipalities", page, limit, search, province_code, region, sort, order)

        def compute() -> dict:
            rows, total = self.store.list_municipalities(
                search=search,
                province_code=province_code,
                region=region,
                sort=sort,
                order=order,
                skip=_skip(page, limit),
                take=limit,
            )
            return envelope(
                "Municípios recuperados com sucesso",
                [municipality_to_dict(m) for m in rows],
                page_meta(page, limit, total),
            )

        return self.cache.fetch(key, LIST_TTL, compute, tags=(TAG_MUNICIPALITIES,))

    def get_municipality(self, municipality_id: str) -> dict:
        def compute() -> dict:
            municipality = self.store.get_municipality(municipality_id)
            if municipality is None:
                raise NotFound("Município não encontrado")
            return envelope("Município recuperado com sucesso", municipality_to_dict(municipality))

        return self.cache.fetch(
            build_key("municipality", municipality_id), DETAIL_TTL, compute, tags=(TAG_MUNICIPALITIES,)
        )

    def create_municipality(self, municipality: Municipality) -> dict:
        created = self.store.create_municipality(municipality)
        self._invalidate_municipality(created.id)
        logger.info("Municipality created id=%s code=%s province=%s", created.id, created.code, created.province_code)
        return envelope("Município criado com sucesso", municipality_to_dict(created))

    def update_municipality(self, municipality_id: str, fields: dict) -> dict:
        if not fields:
            raise ValidationError("Nenhum campo para atualizar")
        updated = self.store.update_municipality(municipality_id, **fields)
        self._invalidate_municipality(municipality_id)
        logger.info("Municipality updated id=%s fields=%s", municipality_id, sorted(fields))
        return envelope("Município atualizado com sucesso", municipality_to_dict(updated))

    def delete_municipality(self, municipality_id: str) -> dict:
        deleted = self.store.delete_municipality(municipality_id)
        self._invalidate_municipality(municipality_id)
        logger.info("Municipality deleted id=%s code=%s", municipality_id, deleted.code)
        return envelope("Município excluído com sucesso")

    def _invalidate_municipality(self, municipality_id: str) -> None:
        self.cache.invalidate(tags=_MUNICIPALITY_TAGS, keys=[build_key("municipality", municipality_id)])

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, q: Optional[str], page: int = 1, limit: int = 20) -> dict:
        """Fan one term out to both entity types and merge the results.

        provinces take ceil(limit/2) from offset 0; municipalities take
        floor(limit/2) and skip max(0, skip - len(provinces)). This only
        approximates combined paging across the two result sets.
        """
        term = normalize_term(q)

        def compute() -> dict:
            skip = _skip(page, limit)
            provinces, _ = self.store.list_provinces(search=term, take=math.ceil(limit / 2))
            municipalities, _ = self.store.list_municipalities(
                search=term,
                search_fields=_MUNICIPALITY_SEARCH_FIELDS,
                skip=max(0, skip - len(provinces)),
                take=limit // 2,
            )
            total = len(provinces) + len(municipalities)
            result = {
                "query": term,
                "provinces": [province_to_dict(p) for p in provinces],
                "municipalities": [municipality_to_dict(m) for m in municipalities],
                "totalResults": total,
            }
            return envelope("Busca realizada com sucesso", result, page_meta(page, limit, total))

        return self.cache.fetch(build_key("search", term, page, limit), SEARCH_TTL, compute, tags=(TAG_SEARCH,))

    def search_provinces(self, q: Optional[str], page: int = 1, limit: int = 15) -> dict:
        term = normalize_term(q)

        def compute() -> dict:
            rows, total = self.store.list_provinces(search=term, skip=_skip(page, limit), take=limit)
            return envelope(
                "Busca de províncias realizada com sucesso",
                [province_to_dict(p) for p in rows],
                page_meta(page, limit, total),
            )

        key = build_key("search", "provinces", term, page, limit)
        return self.cache.fetch(key, SEARCH_TTL, compute, tags=(TAG_SEARCH,))

    def search_municipalities(self, q: Optional[str], page: int = 1, limit: int = 15) -> dict:
        term = normalize_term(q)

        def compute() -> dict:
            rows, total = self.store.list_municipalities(
                search=term,
                search_fields=_MUNICIPALITY_SEARCH_FIELDS,
                skip=_skip(page, limit),
                take=limit,
            )
            return envelope(
                "Busca de municípios realizada com sucesso",
                [municipality_to_dict(m) for m in rows],
                page_meta(page, limit, total),
            )

        key = build_key("search", "municipalities", term, page, limit)
        return self.cache.fetch(key, SEARCH_TTL, compute, tags=(TAG_SEARCH,))

    # ------------------------------------------------------------------
    # Stats / metrics
    # ------------------------------------------------------------------

    def uptime(self) -> float:
        return round(time.monotonic() - self.started_at, 3)

    def stats(self) -> dict:
        def compute() -> dict:
            return envelope(
                "Estatísticas recuperadas com sucesso",
                {
                    "totalProvinces": self.store.count_provinces(),
                    "totalMunicipalities": self.store.count_municipalities(),
                    "apiVersion": self.api_version,
                    "lastUpdated": _now_iso(),
                    "note": STATS_NOTE,
                },
            )

        return self.cache.fetch(build_key("api", "stats"), STATS_TTL, compute, tags=(TAG_STATS,))

    def metrics(self) -> dict:
        def compute() -> dict:
            by_region = self.store.provinces_by_region()
            top = self.store.top_provinces_by_municipalities(5)
            return envelope(
                "Métricas recuperadas com sucesso",
                {
                    "overview": {
                        "totalProvinces": self.store.count_provinces(),
                        "totalMunicipalities": self.store.count_municipalities(),
                        "totalRegions": len(by_region),
                        "lastUpdated": _now_iso(),
                    },
                    "distribution": {
                        "byRegion": [{"region": r, "provincesCount": n} for r, n in by_region.items()],
                        "topProvincesByMunicipalities": [
                            {"name": p.name, "code": p.code, "municipalitiesCount": p.municipalities_count}
                            for p in top
                        ],
                    },
                    "performance": {"uptime": self.uptime()},
                    "system": {
                        "pythonVersion": platform.python_version(),
                        "platform": platform.system().lower(),
                    },
                },
            )

        return self.cache.fetch(build_key("api", "metrics"), METRICS_TTL, compute, tags=(TAG_STATS,))
