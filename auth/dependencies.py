"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Request state machine:
  NoToken       -- no "Authorization: Bearer <token>" header -> 401 MISSING_TOKEN
  TokenPresent  -- decode_token() raises 401 INVALID_TOKEN / EXPIRED_TOKEN
  Verified      -- subject looked up live; missing/inactive -> 401 INACTIVE_USER

The role used for authorization comes from the live user record, not the
token claim, so a demotion takes effect on the next request.

require_roles() builds a role gate on top of get_current_user(). Denial is
403 INSUFFICIENT_ROLE and happens before the route handler runs.

Layer rule: no imports from api/, geo/, or cache/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system. The user
  store is read from request.app.state.ctx, which api/main.py populates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request

from auth.models import ROLE_ADMIN, ROLE_OWNER, User
from auth.tokens import decode_token
from core.errors import Forbidden, Unauthorized

logger = logging.getLogger("angolageo.auth")


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_user(request: Request) -> User:
    """Require a valid access token for an active user.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...

    The resolved user is also attached to request.state.user for logging.
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthorized("Token de acesso requerido", code="MISSING_TOKEN")

    payload = decode_token(token)
    user = request.app.state.ctx.users.get_by_id(payload["userId"])
    if user is None or not user.is_active:
        raise Unauthorized("Usuário não encontrado ou inativo", code="INACTIVE_USER")

    request.state.user = user
    return user


def require_roles(*roles: str) -> Callable[..., User]:
    """Return a dependency that admits only users whose role is in roles."""

    def _gate(request: Request, user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            logger.warning(
                "Role gate denied user=%s role=%s path=%s required=%s",
                user.id,
                user.role,
                request.url.path,
                ",".join(roles),
            )
            raise Forbidden()
        return user

    return _gate


# ADMIN routes accept {ADMIN, OWNER}. An OWNER-only route would use
# require_roles(ROLE_OWNER).
require_admin = require_roles(ROLE_ADMIN, ROLE_OWNER)
