"""
API request and response models for the Angola geo REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in geo/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.

JSON field names are camelCase (chiefAdministrator, provinceCode, ...);
Python attribute names stay snake_case via alias_generator=to_camel, so
model_dump() output can be passed straight to the stores.

Separation of concerns: geo/ models = domain truth; api/ models = API contract.
"""

import re
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import ROLE_USER, User
from geo.models import Municipality, Province

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one @, no whitespace, a dot in the domain part.
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MAX_LIMIT = 100
# Keeps (page - 1) * limit inside a 64-bit SQL OFFSET.
MAX_PAGE = 1_000_000

# Sort allow-lists. Must match geo/store.py PROVINCE_SORT_FIELDS /
# MUNICIPALITY_SORT_FIELDS; anything else is rejected with a 400 here.
ProvinceSort = Literal["name", "code", "capital", "region", "createdAt"]
MunicipalitySort = Literal["name", "code", "createdAt"]
SortOrder = Literal["asc", "desc"]

_Text = Annotated[str, Field(min_length=1, max_length=255)]
_Code = Annotated[str, Field(min_length=1, max_length=10)]
_Latitude = Annotated[float, Field(ge=-90, le=90)]
_Longitude = Annotated[float, Field(ge=-180, le=180)]
_Password = Annotated[str, Field(min_length=6, max_length=128)]


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Email deve ser válido")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------------------------------------------------------------------------
# Province / Municipality request models
# ---------------------------------------------------------------------------


class _GeoAttributes(_CamelModel):
    population: _Text
    area: _Text
    density: _Text
    region: _Text
    timezone: _Text
    currency: _Text
    language: _Text
    religion: _Text
    government: _Text
    chief_administrator: _Text
    area_code: _Text
    postal_code: _Text
    latitude: _Latitude
    longitude: _Longitude


class ProvinceCreate(_GeoAttributes):
    """Request body for POST /provinces. Every field is required and non-empty."""

    code: _Code
    name: _Text
    capital: _Text

    def to_domain(self) -> Province:
        return Province(**self.model_dump())


class MunicipalityCreate(_GeoAttributes):
    """Request body for POST /municipalities. province_code must name an existing province."""

    code: _Code
    name: _Text
    province_code: _Code

    def to_domain(self) -> Municipality:
        return Municipality(**self.model_dump())


class _GeoAttributesUpdate(_CamelModel):
    population: Optional[_Text] = None
    area: Optional[_Text] = None
    density: Optional[_Text] = None
    region: Optional[_Text] = None
    timezone: Optional[_Text] = None
    currency: Optional[_Text] = None
    language: Optional[_Text] = None
    religion: Optional[_Text] = None
    government: Optional[_Text] = None
    chief_administrator: Optional[_Text] = None
    area_code: Optional[_Text] = None
    postal_code: Optional[_Text] = None
    latitude: Optional[_Latitude] = None
    longitude: Optional[_Longitude] = None

    def changes(self) -> dict:
        """Fields the client actually sent, snake_case, nulls dropped."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class ProvinceUpdate(_GeoAttributesUpdate):
    code: Optional[_Code] = None
    name: Optional[_Text] = None
    capital: Optional[_Text] = None


class MunicipalityUpdate(_GeoAttributesUpdate):
    code: Optional[_Code] = None
    name: Optional[_Text] = None
    province_code: Optional[_Code] = None


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    email: str = Field(max_length=255)
    password: _Password

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _check_email(value)


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(min_length=1)


class RegisterRequest(_CamelModel):
    """Request body for POST /auth/register (ADMIN/OWNER only)."""

    name: _Text
    email: str = Field(max_length=255)
    password: _Password
    role: Literal["USER", "ADMIN", "OWNER"] = ROLE_USER

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _check_email(value)


class ProfileUpdate(_CamelModel):
    name: Optional[_Text] = None
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[_Password] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value) if value is not None else None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a User. hashed_password is never part of the contract."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    email: str
    role: str
    is_active: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Factory Method -- the mapping lives with the output model."""
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            is_active=user.is_active,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class ErrorDetail(BaseModel):
    """Structured error body. details is dropped in production."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    error: ErrorDetail
    timestamp: str


class HealthResponse(BaseModel):
    """Unprefixed liveness response."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str

