"""
api/routes/v1/auth.py -- Authentication and account REST endpoints.

Routes (mounted under API_PREFIX, default /api):
  POST /auth/login            -- email/password login; returns user + token pair
  POST /auth/refresh-token    -- exchange a refresh token for a new pair
  GET  /auth/profile          -- current user (requires auth)
  PUT  /auth/profile          -- update own name/email/password (requires auth)
  POST /auth/logout           -- audit log only; tokens are stateless (requires auth)
  POST /auth/register         -- create an account (ADMIN/OWNER)

Security:
  POST /login is rate-limited with AUTH_RATE_LIMIT (default 5 / 15 min per IP).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on login and refresh responses.
  Self-registration is disabled: only ADMIN/OWNER reach /register, and only
  an OWNER may create ADMIN or OWNER accounts.
  Logout cannot revoke anything. A leaked access token stays valid until it
  expires or the account is deactivated.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.context import AppContext, get_context
from api.limiter import auth_limit, limiter
from api.models import LoginRequest, ProfileUpdate, RefreshRequest, RegisterRequest, UserResponse
from auth.dependencies import get_current_user, require_admin
from auth.models import ROLE_OWNER, ROLE_USER, User
from auth.tokens import authenticate_user, create_access_token, create_refresh_token, hash_password, refresh_session
from core.errors import Conflict, Forbidden, Unauthorized, ValidationError

logger = logging.getLogger("angolageo.auth")

# Auth policy:
# - POST /auth/login:          public, AUTH_RATE_LIMIT
# - POST /auth/refresh-token:  public (the refresh token is the credential)
# - GET/PUT /auth/profile:     requires auth (get_current_user)
# - POST /auth/logout:         requires auth (get_current_user)
# - POST /auth/register:       requires admin (require_admin)
router = APIRouter()


def _origin(request: Request) -> tuple[str, str]:
    ip = request.client.host if request.client else "unknown"
    return ip, request.headers.get("User-Agent", "")


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login")
@limiter.limit(auth_limit)  # under @router so the registered endpoint is the limited wrapper
def login(request: Request, body: LoginRequest, ctx: AppContext = Depends(get_context)) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and inactive account all produce the same
    401 INVALID_CREDENTIALS so the response does not reveal which one it was.
    """
    ip, agent = _origin(request)
    try:
        user = authenticate_user(ctx.users, body.email, body.password)
    except Unauthorized:
        logger.warning("Login failed email=%s ip=%s", body.email, ip)
        raise

    logger.info("Login id=%s email=%s role=%s ip=%s ua=%s", user.id, user.email, user.role, ip, agent)
    return _no_store(
        {
            "success": True,
            "message": "Login realizado com sucesso",
            "data": {
                "user": UserResponse.from_user(user).to_json(),
                "token": create_access_token(user),
                "refreshToken": create_refresh_token(user),
            },
        }
    )


@router.post("/auth/refresh-token")
def refresh_token(request: Request, body: RefreshRequest, ctx: AppContext = Depends(get_context)) -> JSONResponse:
    """Issue a fresh access/refresh pair. Any failure is 401 INVALID_TOKEN."""
    user, token, new_refresh = refresh_session(ctx.users, body.refresh_token)
    ip, agent = _origin(request)
    logger.info("Token refreshed id=%s email=%s role=%s ip=%s ua=%s", user.id, user.email, user.role, ip, agent)
    return _no_store(
        {
            "success": True,
            "message": "Token renovado com sucesso",
            "data": {"token": token, "refreshToken": new_refresh},
        }
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/profile")
def get_profile(current_user: User = Depends(get_current_user)) -> JSONResponse:
    return JSONResponse(
        content={
            "success": True,
            "message": "Perfil recuperado com sucesso",
            "data": UserResponse.from_user(current_user).to_json(),
        }
    )


@router.put("/auth/profile")
def update_profile(
    request: Request,
    body: ProfileUpdate,
    ctx: AppContext = Depends(get_context),
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Update the caller's own name, email or password. 409 if the email belongs to someone else."""
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("Nenhum campo para atualizar")

    if "email" in changes and changes["email"] != current_user.email:
        other = ctx.users.get_by_email(changes["email"])
        if other is not None and other.id != current_user.id:
            raise Conflict("Email já está em uso por outro usuário")
    if "password" in changes:
        changes["hashed_password"] = hash_password(changes.pop("password"))

    updated = ctx.users.update_user(current_user.id, **changes)
    ip, agent = _origin(request)
    logger.info(
        "Profile updated id=%s fields=%s ip=%s ua=%s",
        current_user.id,
        sorted(body.model_fields_set),
        ip,
        agent,
    )
    return JSONResponse(
        content={
            "success": True,
            "message": "Perfil atualizado com sucesso",
            "data": UserResponse.from_user(updated).to_json(),
        }
    )


@router.post("/auth/logout")
def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Record the logout. Nothing is revoked server-side."""
    ip, agent = _origin(request)
    logger.info("Logout id=%s email=%s ip=%s ua=%s", current_user.id, current_user.email, ip, agent)
    return JSONResponse(content={"success": True, "message": "Logout realizado com sucesso"})


@router.post("/auth/register", status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    ctx: AppContext = Depends(get_context),
    current_user: User = Depends(require_admin),
) -> JSONResponse:
    """Create an account. ADMIN may create USER accounts; OWNER may create any role."""
    if body.role != ROLE_USER and current_user.role != ROLE_OWNER:
        raise Forbidden("Apenas OWNER pode criar contas ADMIN ou OWNER")
    if ctx.users.get_by_email(body.email) is not None:
        raise Conflict("Usuário já existe com este email")

    user = ctx.users.create_user(
        User(name=body.name, email=body.email, role=body.role, hashed_password=hash_password(body.password))
    )
    ip, agent = _origin(request)
    logger.info(
        "User registered id=%s email=%s role=%s by=%s ip=%s ua=%s",
        user.id,
        user.email,
        user.role,
        current_user.id,
        ip,
        agent,
    )
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "message": "Usuário criado com sucesso",
            "data": UserResponse.from_user(user).to_json(),
        },
    )
