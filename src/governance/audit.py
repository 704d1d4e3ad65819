"""Append-only audit log of agent decisions and their outcomes.

record() never fails silently: any storage error surfaces as
AuditWriteFailure, and callers treat the enclosing action as not committed.
There is no update or delete path.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from src.governance.models import AuditLogRecord
from src.infra.errors import AuditWriteFailure

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger()


class AuditOutcome(StrEnum):
    executed = "executed"
    denied = "denied"
    proposed = "proposed"
    failed = "failed"
    rejected = "rejected"


@dataclass(frozen=True)
class AuditEntry:
    """Entry to append. before/after are only set for writes."""

    studio_id: str
    user_id: str
    tool_name: str
    action_kind: str
    decision: str
    reason: str
    outcome: AuditOutcome
    session_id: str | None = None
    before_state: dict[str, Any] | None = None
    after_state: dict[str, Any] | None = None
    proposal_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class AuditRecordView:
    """Audit entry read model."""

    id: int
    studio_id: str
    user_id: str
    session_id: str | None
    tool_name: str
    action_kind: str
    decision: str
    reason: str
    outcome: str
    before_state: dict | None
    after_state: dict | None
    proposal_id: str | None
    error: str | None
    created_at: datetime


class AuditLog:
    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._db_factory = db_session_factory

    async def record(self, entry: AuditEntry, *, db: AsyncSession | None = None) -> int:
        """Append one entry and return its id.

        With db: joins the caller's transaction (flushed, committed by caller),
        so the action and its entry commit or roll back together.
        Without db: written and committed in its own transaction.
        """
        record = AuditLogRecord(
            studio_id=entry.studio_id,
            user_id=entry.user_id,
            session_id=entry.session_id,
            tool_name=entry.tool_name,
            action_kind=entry.action_kind,
            decision=entry.decision,
            reason=entry.reason,
            outcome=entry.outcome.value,
            before_state=entry.before_state,
            after_state=entry.after_state,
            proposal_id=entry.proposal_id,
            error=entry.error,
        )
        try:
            if db is not None:
                db.add(record)
                await db.flush()
            else:
                async with self._db_factory() as own:
                    own.add(record)
                    await own.commit()
        except SQLAlchemyError as e:
            logger.error(
                "audit_write_failed",
                studio_id=entry.studio_id,
                tool_name=entry.tool_name,
                outcome=entry.outcome.value,
                error=str(e),
            )
            raise AuditWriteFailure(f"Audit entry for {entry.tool_name} not recorded") from e

        logger.info(
            "audit_recorded",
            studio_id=entry.studio_id,
            tool_name=entry.tool_name,
            decision=entry.decision,
            outcome=entry.outcome.value,
        )
        return record.id

    async def query(
        self,
        studio_id: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[AuditRecordView]:
        """Entries of one tenant in [since, until), newest first."""
        stmt = select(AuditLogRecord).where(AuditLogRecord.studio_id == studio_id)
        if since is not None:
            stmt = stmt.where(AuditLogRecord.created_at >= since)
        if until is not None:
            stmt = stmt.where(AuditLogRecord.created_at < until)
        stmt = stmt.order_by(AuditLogRecord.created_at.desc(), AuditLogRecord.id.desc()).limit(limit)

        async with self._db_factory() as db:
            result = await db.execute(stmt)
            return [self._to_view(r) for r in result.scalars().all()]

    @staticmethod
    def _to_view(record: AuditLogRecord) -> AuditRecordView:
        return AuditRecordView(
            id=record.id,
            studio_id=record.studio_id,
            user_id=record.user_id,
            session_id=record.session_id,
            tool_name=record.tool_name,
            action_kind=record.action_kind,
            decision=record.decision,
            reason=record.reason,
            outcome=record.outcome,
            before_state=record.before_state,
            after_state=record.after_state,
            proposal_id=record.proposal_id,
            error=record.error,
            created_at=record.created_at,
        )
