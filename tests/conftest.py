"""
tests/conftest.py -- Shared test fixtures for the Angola geo API tests.

This module provides:
  - _make_context(): isolated in-memory stores + cache wired into an AppContext
  - _patch_lifespan(): puts that context on app.state, bypassing real startup
  - api: module-scoped ApiEnv (TestClient, context, one token per role)
  - province_payload / municipality_payload: request body factories

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment variables must be set before any api/auth/core import:
  DEBUG=true         -- get_settings() auto-generates JWT_SECRET
  BCRYPT_ROUNDS=4    -- keeps hashing fast
  RATE_LIMIT / AUTH_RATE_LIMIT -- high enough that only the rate-limit tests trip them
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set env before any auth/core import so get_settings() sees it.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("AUTH_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CACHE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient

from api.context import AppContext, build_context
from api.main import app
from auth.models import ROLE_ADMIN, ROLE_OWNER, ROLE_USER, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from cache.store import SQLiteCache
from core.config import get_settings
from geo.store import GeoStore

PASSWORD = "senha-segura-123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_context(db_suffix: str) -> AppContext:
    """Build an AppContext on isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB names so test modules
                   don't share state.
    """
    geo_url = f"sqlite:///file:test_geo_{db_suffix}?mode=memory&cache=shared&uri=true"
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    return build_context(
        get_settings(),
        geo=GeoStore(geo_url),
        users=UserStore(users_url),
        cache_backend=SQLiteCache(":memory:"),
    )


def _patch_lifespan(ctx: AppContext):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.ctx = ctx
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@dataclass
class ApiEnv:
    client: TestClient
    ctx: AppContext
    users: dict[str, User]
    tokens: dict[str, str]

    def auth(self, role: str) -> dict[str, str]:
        """Authorization header for the pre-created user with this role."""
        return {"Authorization": f"Bearer {self.tokens[role]}"}


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv for API integration tests.

    Users created (all with password PASSWORD):
      owner@test.ao    OWNER
      admin@test.ao    ADMIN
      user@test.ao     USER
      inactive@test.ao USER, is_active=False
    tokens has an access token for "OWNER", "ADMIN", "USER" and "INACTIVE".
    """
    ctx = _make_context(request.module.__name__.rsplit(".", 1)[-1])

    users: dict[str, User] = {}
    for key, email, role, active in (
        (ROLE_OWNER, "owner@test.ao", ROLE_OWNER, True),
        (ROLE_ADMIN, "admin@test.ao", ROLE_ADMIN, True),
        (ROLE_USER, "user@test.ao", ROLE_USER, True),
        ("INACTIVE", "inactive@test.ao", ROLE_USER, False),
    ):
        users[key] = ctx.users.create_user(
            User(
                name=key.title(),
                email=email,
                role=role,
                hashed_password=hash_password(PASSWORD),
                is_active=active,
            )
        )
    tokens = {key: create_access_token(user) for key, user in users.items()}

    app.router.lifespan_context = _patch_lifespan(ctx)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(client=client, ctx=ctx, users=users, tokens=tokens)

    ctx.close()


def _geo_attributes(**overrides) -> dict:
    body = {
        "population": "2 165 867",
        "area": "18 835 km²",
        "density": "115 hab/km²",
        "region": "Norte",
        "timezone": "WAT",
        "currency": "Kwanza",
        "language": "Português",
        "religion": "Cristianismo",
        "government": "Governo Provincial",
        "chiefAdministrator": "Governador",
        "areaCode": "+244 222",
        "postalCode": "1000",
        "latitude": -8.8383,
        "longitude": 13.2344,
    }
    body.update(overrides)
    return body


@pytest.fixture
def province_payload() -> Callable[..., dict]:
    """Factory for a valid POST /provinces body (camelCase)."""

    def make(code: str = "LDA", name: str = "Luanda", capital: str = "Luanda", **overrides) -> dict:
        return _geo_attributes(code=code, name=name, capital=capital, **overrides)

    return make


@pytest.fixture
def municipality_payload() -> Callable[..., dict]:
    """Factory for a valid POST /municipalities body (camelCase)."""

    def make(code: str = "LDA001", name: str = "Belas", province_code: str = "LDA", **overrides) -> dict:
        return _geo_attributes(code=code, name=name, provinceCode=province_code, **overrides)

    return make
