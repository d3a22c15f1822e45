"""
geo/store.py -- SQLAlchemy-backed persistence for provinces and municipalities.

Uses SQLAlchemy Core (not ORM) so the dataclasses in geo/models.py remain the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. GeoStore is the repository; the _row_to_*
functions are the mappers. Route and service code never touch SQL directly.

Error translation: IntegrityError never leaves this module. Duplicate codes
become Conflict, dangling or still-referenced province codes become
ForeignKeyViolation, missing ids become NotFound (see core/errors.py).

Province deletion policy: REJECT. A province whose code is still referenced
by at least one municipality cannot be deleted, and its code cannot be
changed. The check runs in code before the write; the FOREIGN KEY constraint
backs it up at the database level.

Security: all queries use bound parameters. Sort columns are resolved through
an explicit allow-list mapping; a name outside it raises ValueError before any
SQL is built.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.errors import AppError, Conflict, ForeignKeyViolation, NotFound
from geo.models import Municipality, Province, ProvinceSummary

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'angolageo.db'}"

# Public sort name -> column name. The API validates against the same keys.
PROVINCE_SORT_FIELDS: dict[str, str] = {
    "name": "name",
    "code": "code",
    "capital": "capital",
    "region": "region",
    "createdAt": "created_at",
}
MUNICIPALITY_SORT_FIELDS: dict[str, str] = {
    "name": "name",
    "code": "code",
    "createdAt": "created_at",
}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()


def _attribute_columns() -> list[Column]:
    """Descriptive/administrative columns shared by both tables.

    A function rather than a list constant: a Column object can belong to
    only one Table.
    """
    return [
        Column("population", String(50), nullable=False),
        Column("area", String(50), nullable=False),
        Column("density", String(50), nullable=False),
        Column("region", String(100), nullable=False),
        Column("timezone", String(50), nullable=False),
        Column("currency", String(50), nullable=False),
        Column("language", String(100), nullable=False),
        Column("religion", String(100), nullable=False),
        Column("government", String(100), nullable=False),
        Column("chief_administrator", String(120), nullable=False),
        Column("area_code", String(20), nullable=False),
        Column("postal_code", String(20), nullable=False),
        Column("latitude", Float, nullable=False),
        Column("longitude", Float, nullable=False),
        Column("created_at", String(32), nullable=False),
        Column("updated_at", String(32), nullable=False),
    ]


_provinces = Table(
    "provinces",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("code", String(10), nullable=False, unique=True),
    Column("name", String(120), nullable=False),
    Column("capital", String(120), nullable=False),
    *_attribute_columns(),
)

_municipalities = Table(
    "municipalities",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("code", String(10), nullable=False, unique=True),
    Column("name", String(120), nullable=False),
    Column("province_code", String(10), ForeignKey("provinces.code"), nullable=False, index=True),
    *_attribute_columns(),
)

# Writable fields per entity; update() rejects anything else.
_PROVINCE_FIELDS = frozenset(c.name for c in _provinces.columns) - {"id", "created_at", "updated_at"}
_MUNICIPALITY_FIELDS = frozenset(c.name for c in _municipalities.columns) - {"id", "created_at", "updated_at"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable FOREIGN KEY enforcement and WAL mode on every new connection.

    SQLite PRAGMAs are per-connection and are not inherited from the pool.
    The built-in lower() only folds ASCII, so it is replaced with a Unicode
    one; ilike() compiles to lower(x) LIKE lower(y) on SQLite.
    """
    dbapi_conn.execute("PRAGMA foreign_keys=ON")
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)


def _like(column, term: str):
    """Case-insensitive substring match with LIKE wildcards in term escaped.

    Accented letters fold too (Huíla / HUÍLA); see _set_sqlite_pragmas.
    """
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")


def _order_by(table: Table, allowed: dict[str, str], sort: str, order: str) -> list:
    if sort not in allowed:
        raise ValueError(f"Unsupported sort field: {sort!r}")
    if order not in ("asc", "desc"):
        raise ValueError(f"Unsupported sort order: {order!r}")
    column = table.c[allowed[sort]]
    primary = column.desc() if order == "desc" else column.asc()
    # id as tie-breaker keeps paging stable when the sort column repeats
    return [primary, table.c.id.asc()]


def _translate_integrity_error(exc: IntegrityError, conflict_message: str) -> AppError:
    if "FOREIGN KEY" in str(exc.orig).upper():
        return ForeignKeyViolation()
    return Conflict(conflict_message)


def _check_fields(fields: dict, allowed: frozenset) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown fields: {sorted(unknown)!r}")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class GeoStore:
    """Repository for Province and Municipality entities.

    Usage:
        store = GeoStore()                                # SQLite default
        store = GeoStore("postgresql://user:pw@host/db")  # PostgreSQL
        province = store.create_province(Province(...))
        rows, total = store.list_provinces(search="lua", skip=0, take=15)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool; connections may
            # be used from a different thread than the one that opened them.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Provinces
    # ------------------------------------------------------------------

    def _province_select(self):
        municipalities_count = (
            select(func.count())
            .select_from(_municipalities)
            .where(_municipalities.c.province_code == _provinces.c.code)
            .scalar_subquery()
        )
        return select(_provinces, municipalities_count.label("municipalities_count"))

    def list_provinces(
        self,
        search: Optional[str] = None,
        region: Optional[str] = None,
        sort: str = "name",
        order: str = "asc",
        skip: int = 0,
        take: int = 15,
    ) -> tuple[list[Province], int]:
        """Return one page of provinces and the total number matching the filters.

        search matches name, code, capital and region (case-insensitive
        substring). region is an exact match.
        """
        conditions = []
        if search:
            conditions.append(
                or_(
                    _like(_provinces.c.name, search),
                    _like(_provinces.c.code, search),
                    _like(_provinces.c.capital, search),
                    _like(_provinces.c.region, search),
                )
            )
        if region:
            conditions.append(_provinces.c.region == region)

        stmt = self._province_select()
        count_stmt = select(func.count()).select_from(_provinces)
        if conditions:
            stmt = stmt.where(*conditions)
            count_stmt = count_stmt.where(*conditions)
        stmt = stmt.order_by(*_order_by(_provinces, PROVINCE_SORT_FIELDS, sort, order)).offset(skip).limit(take)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            total = conn.execute(count_stmt).scalar_one()
        return [_row_to_province(r) for r in rows], total

    def get_province(self, province_id: str) -> Optional[Province]:
        """Fetch a single province by id. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._province_select().where(_provinces.c.id == province_id)).fetchone()
        return _row_to_province(row) if row is not None else None

    def create_province(self, province: Province) -> Province:
        """Insert a province and return it as stored (with id and timestamps).

        Raises Conflict if the code is already taken.
        """
        values = asdict(province)
        for derived in ("id", "created_at", "updated_at", "municipalities_count"):
            values.pop(derived)
        province_id = str(uuid.uuid4())
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(_provinces.insert().values(id=province_id, created_at=now, updated_at=now, **values))
                conn.commit()
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, "Já existe uma província com este código") from exc
        return self.get_province(province_id)

    def update_province(self, province_id: str, **fields) -> Province:
        """Apply a partial update and return the updated province.

        Raises NotFound for an unknown id, Conflict for a duplicate code and
        ForeignKeyViolation when changing the code of a referenced province.
        """
        _check_fields(fields, _PROVINCE_FIELDS)
        try:
            with self.engine.connect() as conn:
                current = conn.execute(select(_provinces.c.code).where(_provinces.c.id == province_id)).fetchone()
                if current is None:
                    raise NotFound("Província não encontrada")
                new_code = fields.get("code")
                if new_code is not None and new_code != current.code:
                    if self._count_references(conn, current.code):
                        raise ForeignKeyViolation(
                            "Não é possível alterar o código de uma província com municípios associados"
                        )
                conn.execute(
                    _provinces.update().where(_provinces.c.id == province_id).values(updated_at=_now_iso(), **fields)
                )
                conn.commit()
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, "Já existe uma província com este código") from exc
        return self.get_province(province_id)

    def delete_province(self, province_id: str) -> Province:
        """Delete a province and return the deleted record.

        Raises NotFound for an unknown id and ForeignKeyViolation while any
        municipality still references the province's code.
        """
        province = self.get_province(province_id)
        if province is None:
            raise NotFound("Província não encontrada")
        try:
            with self.engine.connect() as conn:
                if self._count_references(conn, province.code):
                    raise ForeignKeyViolation("Não é possível excluir uma província com municípios associados")
                conn.execute(_provinces.delete().where(_provinces.c.id == province_id))
                conn.commit()
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, "Conflito ao excluir província") from exc
        return province

    def _count_references(self, conn, province_code: str) -> int:
        return conn.execute(
            select(func.count()).select_from(_municipalities).where(_municipalities.c.province_code == province_code)
        ).scalar_one()

    # ------------------------------------------------------------------
    # Municipalities
    # ------------------------------------------------------------------

    def _municipality_select(self):
        return select(
            _municipalities,
            _provinces.c.name.label("province_name"),
            _provinces.c.capital.label("province_capital"),
        ).select_from(_municipalities.join(_provinces, _municipalities.c.province_code == _provinces.c.code))

    def list_municipalities(
        self,
        search: Optional[str] = None,
        province_code: Optional[str] = None,
        region: Optional[str] = None,
        sort: str = "name",
        order: str = "asc",
        skip: int = 0,
        take: int = 15,
        search_fields: tuple[str, ...] = ("name", "code"),
    ) -> tuple[list[Municipality], int]:
        """Return one page of municipalities and the total number matching the filters.

        search matches search_fields (case-insensitive substring);
        province_code and region are exact matches.
        """
        conditions = []
        if search:
            conditions.append(or_(*(_like(_municipalities.c[name], search) for name in search_fields)))
        if province_code:
            conditions.append(_municipalities.c.province_code == province_code)
        if region:
            conditions.append(_municipalities.c.region == region)

        stmt = self._municipality_select()
        count_stmt = select(func.count()).select_from(_municipalities)
        if conditions:
            stmt = stmt.where(*conditions)
            count_stmt = count_stmt.where(*conditions)
        stmt = stmt.order_by(*_order_by(_municipalities, MUNICIPALITY_SORT_FIELDS, sort, order)).offset(skip).limit(take)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            total = conn.execute(count_stmt).scalar_one()
        return [_row_to_municipality(r) for r in rows], total

    def get_municipality(self, municipality_id: str) -> Optional[Municipality]:
        with self.engine.connect() as conn:
            row = conn.execute(
                self._municipality_select().where(_municipalities.c.id == municipality_id)
            ).fetchone()
        return _row_to_municipality(row) if row is not None else None

    def create_municipality(self, municipality: Municipality) -> Municipality:
        """Insert a municipality and return it with its province summary.

        Raises ForeignKeyViolation if province_code names no province and
        Conflict if the code is already taken.
        """
        values = asdict(municipality)
        for derived in ("id", "created_at", "updated_at", "province"):
            values.pop(derived)
        municipality_id = str(uuid.uuid4())
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                self._require_province(conn, municipality.province_code)
                conn.execute(
                    _municipalities.insert().values(id=municipality_id, created_at=now, updated_at=now, **values)
                )
                conn.commit()
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, "Já existe um município com este código") from exc
        return self.get_municipality(municipality_id)

    def update_municipality(self, municipality_id: str, **fields) -> Municipality:
        """Apply a partial update and return the updated municipality.

        Raises NotFound, Conflict or ForeignKeyViolation (unknown province_code).
        """
        _check_fields(fields, _MUNICIPALITY_FIELDS)
        try:
            with self.engine.connect() as conn:
                exists = conn.execute(
                    select(_municipalities.c.id).where(_municipalities.c.id == municipality_id)
                ).fetchone()
                if exists is None:
                    raise NotFound("Município não encontrado")
                if "province_code" in fields:
                    self._require_province(conn, fields["province_code"])
                conn.execute(
                    _municipalities.update()
                    .where(_municipalities.c.id == municipality_id)
                    .values(updated_at=_now_iso(), **fields)
                )
                conn.commit()
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, "Já existe um município com este código") from exc
        return self.get_municipality(municipality_id)

    def delete_municipality(self, municipality_id: str) -> Municipality:
        municipality = self.get_municipality(municipality_id)
        if municipality is None:
            raise NotFound("Município não encontrado")
        with self.engine.connect() as conn:
            conn.execute(_municipalities.delete().where(_municipalities.c.id == municipality_id))
            conn.commit()
        return municipality

    def _require_province(self, conn, province_code: str) -> None:
        row = conn.execute(select(_provinces.c.id).where(_provinces.c.code == province_code)).fetchone()
        if row is None:
            raise ForeignKeyViolation(f"Província com código {province_code!r} não existe")

    # ------------------------------------------------------------------
    # Aggregates (stats / metrics)
    # ------------------------------------------------------------------

    def count_provinces(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_provinces)).scalar_one()

    def count_municipalities(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_municipalities)).scalar_one()

    def provinces_by_region(self) -> dict[str, int]:
        """Return {region: province count}, ordered by region name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_provinces.c.region, func.count().label("n"))
                .group_by(_provinces.c.region)
                .order_by(_provinces.c.region)
            ).fetchall()
        return {r.region: r.n for r in rows}

    def top_provinces_by_municipalities(self, limit: int = 5) -> list[Province]:
        """Return the provinces with the most municipalities, highest first."""
        stmt = self._province_select().subquery()
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(stmt).order_by(stmt.c.municipalities_count.desc(), stmt.c.name.asc()).limit(limit)
            ).fetchall()
        return [_row_to_province(r) for r in rows]

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_province(row) -> Province:
    return Province(
        id=row.id,
        code=row.code,
        name=row.name,
        capital=row.capital,
        population=row.population,
        area=row.area,
        density=row.density,
        region=row.region,
        timezone=row.timezone,
        currency=row.currency,
        language=row.language,
        religion=row.religion,
        government=row.government,
        chief_administrator=row.chief_administrator,
        area_code=row.area_code,
        postal_code=row.postal_code,
        latitude=float(row.latitude),
        longitude=float(row.longitude),
        created_at=row.created_at,
        updated_at=row.updated_at,
        municipalities_count=int(row.municipalities_count or 0),
    )


def _row_to_municipality(row) -> Municipality:
    return Municipality(
        id=row.id,
        code=row.code,
        name=row.name,
        province_code=row.province_code,
        population=row.population,
        area=row.area,
        density=row.density,
        region=row.region,
        timezone=row.timezone,
        currency=row.currency,
        language=row.language,
        religion=row.religion,
        government=row.government,
        chief_administrator=row.chief_administrator,
        area_code=row.area_code,
        postal_code=row.postal_code,
        latitude=float(row.latitude),
        longitude=float(row.longitude),
        created_at=row.created_at,
        updated_at=row.updated_at,
        province=ProvinceSummary(
            name=row.province_name,
            code=row.province_code,
            capital=row.province_capital,
        ),
    )
