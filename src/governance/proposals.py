"""Proposal workflow: deferred writes awaiting human review.

Manages pending → approved | rejected for actions the guardrail deferred.
Approval re-resolves the tool, re-validates the stored payload and re-runs
the guardrail with human approval supplied; it never bypasses policy.
The status change, the executed write and its audit entry share one
transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select, update

from src.agent.guardrail import DecisionOutcome, decide
from src.crm.store import TenantStore
from src.governance.audit import AuditEntry, AuditOutcome
from src.governance.models import ProposalRecord
from src.infra.errors import (
    HandlerExecutionError,
    InvalidTransitionError,
    PolicyDenied,
    ProposalNotFoundError,
    ToolError,
)
from src.tools.context import ToolContext

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.agent.context import AgentContext
    from src.agent.guardrail import ActionRequest, Decision
    from src.governance.audit import AuditLog
    from src.session.memory import WorkingMemoryStore
    from src.tools.base import BaseTool
    from src.tools.registry import ToolRegistry

logger = structlog.get_logger()


class ProposalStatus(StrEnum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


@dataclass(frozen=True)
class ProposalView:
    """Proposal read model."""

    id: str
    studio_id: str
    proposed_by: str
    session_id: str
    tool_name: str
    action_kind: str
    payload: dict[str, Any]
    risk: str
    reason: str
    status: str
    reviewed_by: str | None
    review_note: str | None
    result: dict | None
    created_at: datetime | None
    resolved_at: datetime | None


class ProposalWorkflow:
    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        registry: ToolRegistry,
        audit_log: AuditLog,
        memory: WorkingMemoryStore,
    ) -> None:
        self._db_factory = db_session_factory
        self._registry = registry
        self._audit = audit_log
        self._memory = memory

    async def create(
        self,
        db: AsyncSession,
        context: AgentContext,
        tool: BaseTool,
        payload: dict[str, Any],
        action: ActionRequest,
        decision: Decision,
    ) -> ProposalView:
        """Record a pending proposal inside the caller's transaction (flush only)."""
        record = ProposalRecord(
            studio_id=context.studio_id,
            proposed_by=context.user_id,
            session_id=context.session_id,
            tool_name=tool.name,
            action_kind=action.kind.value,
            payload=payload,
            risk=tool.risk_level.value,
            reason=decision.detail or decision.reason.value,
            status=ProposalStatus.pending.value,
        )
        db.add(record)
        await db.flush()
        await db.refresh(record)
        logger.info(
            "proposal_created",
            proposal_id=record.id,
            studio_id=context.studio_id,
            tool_name=tool.name,
            risk=record.risk,
        )
        return self._to_view(record)

    async def approve(
        self, context: AgentContext, proposal_id: str, *, note: str | None = None
    ) -> ProposalView:
        """Approve and execute a pending proposal.

        context is the reviewer's context; its policy is the tenant's current one.
        Raises ProposalNotFoundError, InvalidTransitionError, UnknownToolError,
        ValidationError, PolicyDenied or HandlerExecutionError; on any of them
        the proposal stays pending.
        """
        async with self._db_factory() as db:
            record = await self._get(db, context.studio_id, proposal_id, for_update=True)
            if record.status != ProposalStatus.pending:
                raise InvalidTransitionError(
                    proposal_id, record.status, ProposalStatus.approved.value
                )

            tool = self._registry.resolve(record.tool_name)
            params = tool.validate(record.payload)

            exec_agent = replace(context, session_id=record.session_id)
            tool_ctx = ToolContext(
                agent=exec_agent,
                store=TenantStore(db, context.studio_id),
                memory=self._memory,
                db=db,
            )
            action = tool.describe_action(params, tool_ctx)
            decision = decide(exec_agent, action, human_approved=True)

            base_entry = AuditEntry(
                studio_id=context.studio_id,
                user_id=context.user_id,
                session_id=record.session_id,
                tool_name=tool.name,
                action_kind=action.kind.value,
                decision=decision.outcome.value,
                reason=decision.reason.value,
                outcome=AuditOutcome.denied,
                proposal_id=proposal_id,
            )

            if decision.outcome != DecisionOutcome.allow:
                await self._audit.record(base_entry, db=db)
                await db.commit()
                raise PolicyDenied(
                    decision.detail or "Policy no longer permits this action",
                    reason=decision.reason.value,
                )

            before: dict | None = None
            try:
                if tool.is_write:
                    before = await tool.snapshot(params, tool_ctx)
                result = await tool.execute(params, tool_ctx)
            except Exception as e:
                await db.rollback()
                logger.exception(
                    "proposal_execution_failed",
                    proposal_id=proposal_id,
                    tool_name=tool.name,
                )
                await self._audit.record(
                    replace(
                        base_entry,
                        outcome=AuditOutcome.failed,
                        before_state=before,
                        error=str(e),
                    )
                )
                code = e.code if isinstance(e, ToolError) else "EXECUTION_ERROR"
                raise HandlerExecutionError(
                    f"Approved action {tool.name} failed: {e}", code=code
                ) from e

            record.status = ProposalStatus.approved.value
            record.reviewed_by = context.user_id
            record.review_note = note
            record.result = result
            record.resolved_at = func.now()

            await self._audit.record(
                replace(
                    base_entry,
                    outcome=AuditOutcome.executed,
                    before_state=before,
                    after_state=result if tool.is_write else None,
                ),
                db=db,
            )
            await db.commit()
            await db.refresh(record)

        logger.info(
            "proposal_approved",
            proposal_id=proposal_id,
            studio_id=context.studio_id,
            reviewed_by=context.user_id,
        )
        return self._to_view(record)

    async def reject(
        self, context: AgentContext, proposal_id: str, *, note: str | None = None
    ) -> ProposalView:
        """Reject a pending proposal. Nothing is executed."""
        async with self._db_factory() as db:
            result = await db.execute(
                update(ProposalRecord)
                .where(
                    ProposalRecord.id == proposal_id,
                    ProposalRecord.studio_id == context.studio_id,
                    ProposalRecord.status == ProposalStatus.pending.value,
                )
                .values(
                    status=ProposalStatus.rejected.value,
                    reviewed_by=context.user_id,
                    review_note=note,
                    resolved_at=func.now(),
                )
                .returning(ProposalRecord)
                .execution_options(synchronize_session=False)
            )
            record = result.scalars().first()
            if record is None:
                existing = await self._get(db, context.studio_id, proposal_id)
                raise InvalidTransitionError(
                    proposal_id, existing.status, ProposalStatus.rejected.value
                )

            await self._audit.record(
                AuditEntry(
                    studio_id=context.studio_id,
                    user_id=context.user_id,
                    session_id=record.session_id,
                    tool_name=record.tool_name,
                    action_kind=record.action_kind,
                    decision=DecisionOutcome.deny.value,
                    reason="human_rejected",
                    outcome=AuditOutcome.rejected,
                    proposal_id=proposal_id,
                ),
                db=db,
            )
            await db.commit()
            await db.refresh(record)

        logger.info(
            "proposal_rejected",
            proposal_id=proposal_id,
            studio_id=context.studio_id,
            reviewed_by=context.user_id,
        )
        return self._to_view(record)

    async def get(self, studio_id: str, proposal_id: str) -> ProposalView:
        async with self._db_factory() as db:
            return self._to_view(await self._get(db, studio_id, proposal_id))

    async def list(
        self,
        studio_id: str,
        *,
        status: ProposalStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 50,
    ) -> list[ProposalView]:
        """Proposals of one tenant, newest first, for review tooling."""
        stmt = select(ProposalRecord).where(ProposalRecord.studio_id == studio_id)
        if status is not None:
            stmt = stmt.where(ProposalRecord.status == status.value)
        if since is not None:
            stmt = stmt.where(ProposalRecord.created_at >= since)
        if until is not None:
            stmt = stmt.where(ProposalRecord.created_at < until)
        stmt = stmt.order_by(ProposalRecord.created_at.desc()).limit(limit)

        async with self._db_factory() as db:
            result = await db.execute(stmt)
            return [self._to_view(r) for r in result.scalars().all()]

    # ── helpers ──

    @staticmethod
    async def _get(
        db: AsyncSession, studio_id: str, proposal_id: str, *, for_update: bool = False
    ) -> ProposalRecord:
        """Get a proposal of this tenant. Raises ProposalNotFoundError."""
        stmt = select(ProposalRecord).where(
            ProposalRecord.id == proposal_id,
            ProposalRecord.studio_id == studio_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        record = result.scalars().first()
        if record is None:
            raise ProposalNotFoundError(proposal_id)
        return record

    @staticmethod
    def _to_view(record: ProposalRecord) -> ProposalView:
        return ProposalView(
            id=record.id,
            studio_id=record.studio_id,
            proposed_by=record.proposed_by,
            session_id=record.session_id,
            tool_name=record.tool_name,
            action_kind=record.action_kind,
            payload=record.payload,
            risk=record.risk,
            reason=record.reason,
            status=record.status,
            reviewed_by=record.reviewed_by,
            review_note=record.review_note,
            result=record.result,
            created_at=record.created_at,
            resolved_at=record.resolved_at,
        )
