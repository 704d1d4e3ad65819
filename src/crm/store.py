"""Tenant-scoped CRUD over the CRM tables.

A TenantStore is bound to exactly one studio_id and one AsyncSession.
Every statement it issues filters on that studio_id, inserts are forced
into it, and patches cannot move a row to another tenant.
The caller owns the transaction: the store flushes but never commits.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.models import ClientRecord, InvoiceRecord, LeadRecord, PhotoSessionRecord
from src.infra.errors import ToolError

logger = structlog.get_logger()

TABLES: dict[str, type] = {
    "crm_clients": ClientRecord,
    "crm_leads": LeadRecord,
    "crm_invoices": InvoiceRecord,
    "crm_sessions": PhotoSessionRecord,
}

_IMMUTABLE_COLUMNS = frozenset({"id", "studio_id", "created_at"})


def to_jsonable(value: Any) -> Any:
    """Convert DB scalar values into JSON-safe values for snapshots and results."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def row_to_dict(row: Any) -> dict[str, Any]:
    return {
        c.key: to_jsonable(getattr(row, c.key))
        for c in row.__table__.columns
    }


class TenantStore:
    """CRUD primitives scoped by tenant id."""

    def __init__(self, db: AsyncSession, studio_id: str) -> None:
        if not studio_id:
            raise ValueError("TenantStore requires a studio_id")
        self._db = db
        self._studio_id = studio_id

    @property
    def studio_id(self) -> str:
        return self._studio_id

    @staticmethod
    def _model(table: str) -> type:
        model = TABLES.get(table)
        if model is None:
            raise ToolError(f"Unknown table: {table}", code="UNKNOWN_TABLE")
        return model

    @staticmethod
    def _check_columns(model: type, names: Sequence[str]) -> None:
        columns = set(model.__table__.columns.keys())
        unknown = [n for n in names if n not in columns]
        if unknown:
            raise ToolError(
                f"Unknown column(s) for {model.__tablename__}: {', '.join(unknown)}",
                code="UNKNOWN_COLUMN",
            )

    async def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        limit: int = 25,
        search: str | None = None,
        search_columns: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        """Equality filters plus optional case-insensitive search, newest first."""
        model = self._model(table)
        filters = dict(filters or {})
        self._check_columns(model, [*filters, *search_columns])

        stmt = select(model).where(model.studio_id == self._studio_id)
        for name, value in filters.items():
            stmt = stmt.where(getattr(model, name) == value)
        if search and search_columns:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(*(getattr(model, c).ilike(pattern) for c in search_columns))
            )
        stmt = stmt.order_by(model.created_at.desc()).limit(limit)

        result = await self._db.execute(stmt)
        return [row_to_dict(r) for r in result.scalars().all()]

    async def get(
        self, table: str, row_id: str, *, for_update: bool = False
    ) -> dict[str, Any] | None:
        """Fetch one row of this tenant. for_update locks it until the transaction ends."""
        model = self._model(table)
        stmt = select(model).where(
            model.id == row_id,
            model.studio_id == self._studio_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._db.execute(stmt)
        row = result.scalars().first()
        return row_to_dict(row) if row is not None else None

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        model = self._model(table)
        values = dict(row)
        claimed = values.pop("studio_id", self._studio_id)
        if claimed != self._studio_id:
            logger.warning(
                "tenant_mismatch_blocked",
                table=table,
                bound_studio_id=self._studio_id,
                claimed_studio_id=claimed,
            )
            raise ToolError("Row belongs to another tenant", code="TENANT_MISMATCH")
        self._check_columns(model, list(values))

        record = model(**values, studio_id=self._studio_id)
        self._db.add(record)
        await self._db.flush()
        await self._db.refresh(record)
        return row_to_dict(record)

    async def update(
        self, table: str, row_id: str, patch: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        """Single-statement atomic update. Returns None if the row is not in this tenant."""
        model = self._model(table)
        values = dict(patch)
        immutable = _IMMUTABLE_COLUMNS & values.keys()
        if immutable:
            raise ToolError(
                f"Cannot modify column(s): {', '.join(sorted(immutable))}",
                code="IMMUTABLE_COLUMN",
            )
        self._check_columns(model, list(values))
        if "updated_at" in model.__table__.columns:
            values["updated_at"] = func.now()

        stmt = (
            update(model)
            .where(model.id == row_id, model.studio_id == self._studio_id)
            .values(**values)
            .returning(model)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        row = result.scalars().first()
        if row is None:
            return None
        await self._db.refresh(row)
        return row_to_dict(row)
