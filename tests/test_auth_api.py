"""Integration tests for api/routes/v1/auth.py.

Covers login, refresh, profile, logout, register and the login rate limit.
Tests that change an account work on a freshly registered user so the
shared fixture users keep their credentials for the rest of the module.
"""

from __future__ import annotations

import uuid

import pytest
from limits.strategies import MovingWindowRateLimiter

from api.limiter import limiter
from auth.tokens import create_refresh_token
from core.config import get_settings
from core.errors import TooManyRequests

# Same password conftest gives the fixture users.
PASSWORD = "senha-segura-123"


def _login(api, email: str, password: str = PASSWORD):
    return api.client.post("/api/auth/login", json={"email": email, "password": password})


def _register(api, role: str = "USER", by: str = "OWNER") -> dict:
    """Register a throwaway account and return {email, id, headers}."""
    email = f"u{uuid.uuid4().hex[:10]}@test.ao"
    resp = api.client.post(
        "/api/auth/register",
        json={"name": "Conta Teste", "email": email, "password": PASSWORD, "role": role},
        headers=api.auth(by),
    )
    assert resp.status_code == 201, resp.text
    token = _login(api, email).json()["data"]["token"]
    return {"email": email, "id": resp.json()["data"]["id"], "headers": {"Authorization": f"Bearer {token}"}}


# ---------------------------------------------------------------------------
# Login / refresh
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success(self, api) -> None:
        resp = _login(api, "admin@test.ao")
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()["data"]
        assert data["user"]["email"] == "admin@test.ao"
        assert data["user"]["role"] == "ADMIN"
        assert "hashedPassword" not in data["user"]
        assert data["token"] and data["refreshToken"]

    def test_email_is_case_insensitive(self, api) -> None:
        assert _login(api, "  ADMIN@Test.ao ").status_code == 200

    @pytest.mark.parametrize(
        "email,password",
        [
            ("admin@test.ao", "senha-errada"),
            ("ninguem@test.ao", PASSWORD),
            ("inactive@test.ao", PASSWORD),
        ],
    )
    def test_failures_are_indistinguishable(self, api, email: str, password: str) -> None:
        resp = _login(api, email, password)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_CREDENTIALS"

    @pytest.mark.parametrize(
        "body",
        [{"email": "not-an-email", "password": PASSWORD}, {"email": "a@b.ao", "password": "123"}, {}],
    )
    def test_malformed_body_is_400(self, api, body: dict) -> None:
        resp = api.client.post("/api/auth/login", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


class TestRefresh:
    def test_new_pair_is_usable(self, api) -> None:
        refresh = _login(api, "user@test.ao").json()["data"]["refreshToken"]
        resp = api.client.post("/api/auth/refresh-token", json={"refreshToken": refresh})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()["data"]
        profile = api.client.get("/api/auth/profile", headers={"Authorization": f"Bearer {data['token']}"})
        assert profile.json()["data"]["email"] == "user@test.ao"
        assert data["refreshToken"]

    def test_access_token_is_not_a_refresh_token(self, api) -> None:
        resp = api.client.post("/api/auth/refresh-token", json={"refreshToken": api.tokens["USER"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"

    def test_refresh_token_is_not_an_access_token(self, api) -> None:
        token = create_refresh_token(api.users["USER"])
        resp = api.client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"

    def test_inactive_subject_rejected(self, api) -> None:
        token = create_refresh_token(api.users["INACTIVE"])
        resp = api.client.post("/api/auth/refresh-token", json={"refreshToken": token})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"


# ---------------------------------------------------------------------------
# Token checks on protected routes
# ---------------------------------------------------------------------------


class TestTokenGate:
    def test_missing_token(self, api) -> None:
        resp = api.client.get("/api/auth/profile")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "MISSING_TOKEN"

    def test_non_bearer_scheme(self, api) -> None:
        resp = api.client.get("/api/auth/profile", headers={"Authorization": f"Basic {api.tokens['USER']}"})
        assert resp.json()["error"]["code"] == "MISSING_TOKEN"

    def test_garbage_token(self, api) -> None:
        resp = api.client.get("/api/auth/profile", headers={"Authorization": "Bearer abc.def.ghi"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_TOKEN"

    def test_inactive_user(self, api) -> None:
        resp = api.client.get("/api/auth/profile", headers=api.auth("INACTIVE"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INACTIVE_USER"

    def test_role_is_read_from_store(self, api) -> None:
        """A demoted admin loses write access even with a token that still says ADMIN."""
        account = _register(api, role="ADMIN")
        api.ctx.users.update_user(account["id"], role="USER")
        resp = api.client.delete(f"/api/provinces/{uuid.uuid4()}", headers=account["headers"])
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Profile / logout
# ---------------------------------------------------------------------------


class TestProfile:
    def test_get(self, api) -> None:
        data = api.client.get("/api/auth/profile", headers=api.auth("OWNER")).json()["data"]
        assert data["email"] == "owner@test.ao"
        assert data["role"] == "OWNER"
        assert data["isActive"] is True

    def test_update_name_and_password(self, api) -> None:
        account = _register(api)
        resp = api.client.put(
            "/api/auth/profile",
            json={"name": "Nome Novo", "password": "outra-senha-456"},
            headers=account["headers"],
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["name"] == "Nome Novo"
        assert _login(api, account["email"]).status_code == 401
        assert _login(api, account["email"], "outra-senha-456").status_code == 200

    def test_email_taken_by_other_is_409(self, api) -> None:
        account = _register(api)
        resp = api.client.put("/api/auth/profile", json={"email": "admin@test.ao"}, headers=account["headers"])
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "DUPLICATE_ENTRY"

    def test_same_email_is_allowed(self, api) -> None:
        account = _register(api)
        resp = api.client.put("/api/auth/profile", json={"email": account["email"]}, headers=account["headers"])
        assert resp.status_code == 200

    def test_empty_update_is_400(self, api) -> None:
        account = _register(api)
        assert api.client.put("/api/auth/profile", json={}, headers=account["headers"]).status_code == 400

    def test_logout(self, api) -> None:
        resp = api.client.post("/api/auth/logout", headers=api.auth("USER"))
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        # stateless tokens: still valid after logout
        assert api.client.get("/api/auth/profile", headers=api.auth("USER")).status_code == 200


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


class TestRegister:
    def _body(self, role: str = "USER") -> dict:
        return {"name": "Nova Conta", "email": f"n{uuid.uuid4().hex[:10]}@test.ao", "password": PASSWORD, "role": role}

    def test_admin_creates_user(self, api) -> None:
        resp = api.client.post("/api/auth/register", json=self._body(), headers=api.auth("ADMIN"))
        assert resp.status_code == 201
        assert resp.json()["data"]["role"] == "USER"

    def test_role_defaults_to_user(self, api) -> None:
        body = self._body()
        del body["role"]
        resp = api.client.post("/api/auth/register", json=body, headers=api.auth("ADMIN"))
        assert resp.json()["data"]["role"] == "USER"

    @pytest.mark.parametrize("role", ["ADMIN", "OWNER"])
    def test_admin_cannot_create_privileged(self, api, role: str) -> None:
        resp = api.client.post("/api/auth/register", json=self._body(role), headers=api.auth("ADMIN"))
        assert resp.status_code == 403

    def test_owner_creates_admin(self, api) -> None:
        resp = api.client.post("/api/auth/register", json=self._body("ADMIN"), headers=api.auth("OWNER"))
        assert resp.status_code == 201
        assert resp.json()["data"]["role"] == "ADMIN"

    def test_user_cannot_register(self, api) -> None:
        resp = api.client.post("/api/auth/register", json=self._body(), headers=api.auth("USER"))
        assert resp.status_code == 403

    def test_duplicate_email_is_409(self, api) -> None:
        body = self._body()
        body["email"] = "user@test.ao"
        resp = api.client.post("/api/auth/register", json=body, headers=api.auth("OWNER"))
        assert resp.status_code == 409

    def test_unknown_role_is_400(self, api) -> None:
        resp = api.client.post("/api/auth/register", json=self._body("ROOT"), headers=api.auth("OWNER"))
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class TestLoginRateLimit:
    @pytest.fixture
    def tight_limit(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "auth_rate_limit", "2/minute")
        limiter.reset()
        yield
        limiter.reset()

    def test_third_attempt_is_429(self, api, tight_limit) -> None:
        assert _login(api, "user@test.ao").status_code == 200
        assert _login(api, "user@test.ao", "senha-errada").status_code == 401

        resp = _login(api, "user@test.ao")

        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "TOO_MANY_REQUESTS"
        assert resp.json()["message"] == TooManyRequests.message
        assert int(resp.headers["Retry-After"]) > 0

    def test_other_routes_unaffected(self, api, tight_limit) -> None:
        for _ in range(3):
            _login(api, "user@test.ao")
        assert api.client.get("/api/provinces").status_code == 200

    def test_limit_counts_per_route(self, api, tight_limit) -> None:
        """The stricter login limit is registered on the login endpoint itself."""
        assert _login(api, "user@test.ao").status_code == 200
        assert _login(api, "user@test.ao").status_code == 200
        assert api.client.get("/api/auth/profile", headers=api.auth("USER")).status_code == 200
        assert _login(api, "user@test.ao").status_code == 429

    def test_window_is_moving(self) -> None:
        assert isinstance(limiter._limiter, MovingWindowRateLimiter), "Limits must count over a sliding window"
