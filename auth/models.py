"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in geo/models.py -- dataclasses own domain shape; stores and routes do the
work.

Layer rule: no imports from api/, geo/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass

# Ordered by privilege. ADMIN routes accept ADMIN and OWNER; OWNER routes
# accept OWNER only.
ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"
ROLE_OWNER = "OWNER"
ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_OWNER)


@dataclass
class User:
    """Represents an authenticated identity.

    email is globally unique and is the login name. hashed_password is never
    serialized outward; api/ builds responses from the other fields only.

    id is a uuid4 string assigned by UserStore.create_user().
    """

    name: str
    email: str
    role: str = ROLE_USER
    id: str | None = None
    hashed_password: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None
