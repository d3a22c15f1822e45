"""
geo/models.py -- Domain dataclasses for Angola's administrative hierarchy.

Pure data containers with zero logic. Persistence lives in geo/store.py and
response shaping in geo/service.py.

population, area and density are free-text strings as published (e.g.
"2 165 867", "18 835 km²") and are never parsed into numbers.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ProvinceSummary:
    """The slice of a Province embedded in every Municipality response."""

    name: str
    code: str
    capital: str


@dataclass
class Province:
    """A province. id is None before the record is written to the database.

    municipalities_count is derived at read time and never stored.
    """

    code: str
    name: str
    capital: str
    population: str
    area: str
    density: str
    region: str
    timezone: str
    currency: str
    language: str
    religion: str
    government: str
    chief_administrator: str
    area_code: str
    postal_code: str
    latitude: float
    longitude: float
    id: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
    municipalities_count: int = 0


@dataclass
class Municipality:
    """A municipality. province_code references exactly one Province.code.

    province is the denormalized summary attached at read time.
    """

    code: str
    name: str
    province_code: str
    population: str
    area: str
    density: str
    region: str
    timezone: str
    currency: str
    language: str
    religion: str
    government: str
    chief_administrator: str
    area_code: str
    postal_code: str
    latitude: float
    longitude: float
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    province: Optional[ProvinceSummary] = None
