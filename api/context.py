"""
api/context.py -- Explicitly constructed application context.

One AppContext is built in the lifespan and stored on app.state.ctx. Route
handlers and dependencies read it from the request instead of reaching for
module-level singletons, so tests can swap in their own stores and cache by
building a context with build_context() (or by hand) and patching lifespan.

Layer rule: api/ is the outermost layer and may import from every other
package; nothing imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from auth.store import UserStore
from cache.query import QueryCache
from cache.store import CacheBackend, create_cache
from core.config import Settings
from geo.service import GeoService
from geo.store import GeoStore


@dataclass
class AppContext:
    settings: Settings
    geo: GeoStore
    users: UserStore
    cache_backend: CacheBackend
    cache: QueryCache
    service: GeoService

    def close(self) -> None:
        self.cache_backend.close()
        self.geo.close()
        self.users.close()


def build_context(
    settings: Settings,
    geo: GeoStore | None = None,
    users: UserStore | None = None,
    cache_backend: CacheBackend | None = None,
) -> AppContext:
    """Wire stores, cache and service together. Missing parts come from settings."""
    geo = geo or GeoStore(settings.database_url)
    users = users or UserStore(settings.database_url)
    cache_backend = cache_backend or create_cache(settings.cache_url)
    cache = QueryCache(cache_backend)
    return AppContext(
        settings=settings,
        geo=geo,
        users=users,
        cache_backend=cache_backend,
        cache=cache,
        service=GeoService(geo, cache, api_version=settings.api_version),
    )


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the context built at startup."""
    return request.app.state.ctx
