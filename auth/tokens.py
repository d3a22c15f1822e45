"""
auth/tokens.py -- JWT issuance/verification and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with JWT_SECRET and carry
       userId, email, role, iat and exp. Refresh tokens add type="refresh";
       an access-token check rejects them and a refresh-token check rejects
       anything without it. Tokens are stateless -- nothing is stored
       server-side, so the only way to revoke one early is to deactivate the
       account.

  Passwords: bcrypt directly (cost factor BCRYPT_ROUNDS, default 12). The
       _DUMMY_HASH constant enables timing equalization in authenticate_user()
       so response time does not reveal whether an email exists.

  Failures: decode_token() raises core.errors.Unauthorized with a specific
       code (EXPIRED_TOKEN vs INVALID_TOKEN); the HTTP layer renders it.

Layer rule: no imports from api/, geo/, or cache/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import get_settings
from core.errors import Unauthorized

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("angolageo.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt silently truncates at 72 bytes; the API layer caps passwords at
    128 characters.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed hash in the DB
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("angolageo_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(user: User, expire_seconds: int, token_type: str | None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user.id,
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + timedelta(seconds=expire_seconds),
    }
    if token_type is not None:
        payload["type"] = token_type
    return jwt.encode(payload, _settings.jwt_secret, algorithm=_ALGORITHM)


def create_access_token(user: User) -> str:
    """Encode a signed access token valid for JWT_EXPIRES_SECONDS (default 24h)."""
    return _encode(user, _settings.jwt_expires_seconds, None)


def create_refresh_token(user: User) -> str:
    """Encode a signed refresh token valid for JWT_REFRESH_EXPIRES_SECONDS (default 7d)."""
    return _encode(user, _settings.jwt_refresh_expires_seconds, TOKEN_TYPE_REFRESH)


def decode_token(token: str, expected_type: str = TOKEN_TYPE_ACCESS) -> dict:
    """Verify signature, expiry and type marker. Returns the claims dict.

    Raises Unauthorized with code EXPIRED_TOKEN for a past exp and
    INVALID_TOKEN for every other failure (bad signature, malformed token,
    missing claims, wrong type).
    """
    try:
        payload = jwt.decode(token, _settings.jwt_secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise Unauthorized("Token expirado", code="EXPIRED_TOKEN") from exc
    except JWTError as exc:
        raise Unauthorized("Token inválido", code="INVALID_TOKEN") from exc

    if "userId" not in payload or "role" not in payload:
        raise Unauthorized("Token inválido", code="INVALID_TOKEN")
    is_refresh = payload.get("type") == TOKEN_TYPE_REFRESH
    if is_refresh != (expected_type == TOKEN_TYPE_REFRESH):
        raise Unauthorized("Token inválido", code="INVALID_TOKEN")
    return payload


# ---------------------------------------------------------------------------
# Login / refresh (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password or inactive account: bcrypt runs against the real hash

    Raises Unauthorized(INVALID_CREDENTIALS) for all three failure cases so
    the caller cannot tell them apart.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        raise Unauthorized("Credenciais inválidas", code="INVALID_CREDENTIALS")
    if not verify_password(password, user.hashed_password) or not user.is_active:
        raise Unauthorized("Credenciais inválidas", code="INVALID_CREDENTIALS")
    return user


def refresh_session(store: UserStore, refresh_token: str) -> tuple[User, str, str]:
    """Exchange a refresh token for a new (access, refresh) pair.

    Every failure -- bad signature, expiry, missing type marker, unknown or
    inactive subject -- surfaces as INVALID_TOKEN.
    """
    try:
        payload = decode_token(refresh_token, expected_type=TOKEN_TYPE_REFRESH)
    except Unauthorized as exc:
        raise Unauthorized("Refresh token inválido", code="INVALID_TOKEN") from exc

    user = store.get_by_id(payload["userId"])
    if user is None or not user.is_active:
        raise Unauthorized("Refresh token inválido", code="INVALID_TOKEN")
    return user, create_access_token(user), create_refresh_token(user)
