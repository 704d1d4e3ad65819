"""Per-conversation working memory.

Each field is its own row, upserted independently, so two overlapping
updates of different fields both survive and an update never rewrites
fields it did not name (last write wins per field).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from src.infra.errors import SessionNotFoundError, ValidationError
from src.session.models import MemoryFieldRecord, MemorySessionRecord

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger()

MEMORY_FIELDS = ("selected_client_id", "current_goal", "preferences", "context")


@dataclass(frozen=True)
class WorkingMemory:
    """Read model of one session's memory. Absent fields are simply missing."""

    studio_id: str
    session_id: str
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def selected_client_id(self) -> str | None:
        return self.fields.get("selected_client_id")

    @property
    def current_goal(self) -> str | None:
        return self.fields.get("current_goal")

    @property
    def preferences(self) -> dict[str, Any] | None:
        return self.fields.get("preferences")

    @property
    def context(self) -> dict[str, Any] | None:
        return self.fields.get("context")


def clean_partial(partial: Mapping[str, Any]) -> dict[str, Any]:
    """Keep only explicitly provided fields. None means 'not provided'.

    Raises ValidationError on names outside MEMORY_FIELDS.
    """
    unknown = sorted(k for k in partial if k not in MEMORY_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown memory field(s): {', '.join(unknown)}",
            violations=[
                {"field": k, "constraint": "unknown_field", "message": "not a memory field"}
                for k in unknown
            ],
        )
    return {k: v for k, v in partial.items() if v is not None}


class WorkingMemoryStore:
    """Working memory keyed by (studio_id, session_id).

    Methods accept an optional db session: when given, writes join the
    caller's transaction (flush only); otherwise they run in their own.
    """

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._db = db_session_factory

    async def update(
        self,
        studio_id: str,
        session_id: str,
        partial: Mapping[str, Any],
        *,
        user_id: str | None = None,
        db: AsyncSession | None = None,
    ) -> WorkingMemory:
        """Merge partial into the session's memory and return the merged state."""
        fields = clean_partial(partial)
        if db is not None:
            await self._upsert(db, studio_id, session_id, fields, user_id)
            await db.flush()
            return await self._load(db, studio_id, session_id)

        async with self._db() as own:
            await self._upsert(own, studio_id, session_id, fields, user_id)
            await own.commit()
            return await self._load(own, studio_id, session_id)

    async def get(
        self, studio_id: str, session_id: str, *, db: AsyncSession | None = None
    ) -> WorkingMemory:
        """Return the session's memory. Raises SessionNotFoundError if never written."""
        if db is not None:
            return await self._load(db, studio_id, session_id)
        async with self._db() as own:
            return await self._load(own, studio_id, session_id)

    # ── helpers ──

    @staticmethod
    async def _upsert(
        db: AsyncSession,
        studio_id: str,
        session_id: str,
        fields: dict[str, Any],
        user_id: str | None,
    ) -> None:
        await db.execute(
            pg_insert(MemorySessionRecord)
            .values(studio_id=studio_id, session_id=session_id, user_id=user_id)
            .on_conflict_do_update(
                index_elements=["studio_id", "session_id"],
                set_={"updated_at": func.now()},
            )
        )
        for name, value in fields.items():
            stmt = pg_insert(MemoryFieldRecord).values(
                studio_id=studio_id, session_id=session_id, name=name, value=value
            )
            await db.execute(
                stmt.on_conflict_do_update(
                    index_elements=["studio_id", "session_id", "name"],
                    set_={"value": stmt.excluded.value, "updated_at": func.now()},
                )
            )
        logger.info(
            "working_memory_updated",
            studio_id=studio_id,
            session_id=session_id,
            fields=sorted(fields),
        )

    @staticmethod
    async def _load(db: AsyncSession, studio_id: str, session_id: str) -> WorkingMemory:
        header = await db.execute(
            select(MemorySessionRecord.session_id).where(
                MemorySessionRecord.studio_id == studio_id,
                MemorySessionRecord.session_id == session_id,
            )
        )
        if header.scalar_one_or_none() is None:
            raise SessionNotFoundError(session_id)

        rows = await db.execute(
            select(MemoryFieldRecord.name, MemoryFieldRecord.value).where(
                MemoryFieldRecord.studio_id == studio_id,
                MemoryFieldRecord.session_id == session_id,
            )
        )
        return WorkingMemory(
            studio_id=studio_id,
            session_id=session_id,
            fields={name: value for name, value in rows.all()},
        )
