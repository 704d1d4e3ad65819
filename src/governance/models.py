"""SQLAlchemy 2.0 models for agent governance.

Includes:
- PolicyRecord: per-tenant (optionally per-user) agent policy
- ProposalRecord: deferred writes awaiting human review
- AuditLogRecord: append-only trail of every decision and outcome
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.constants import DB_SCHEMA
from src.session.models import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class PolicyRecord(Base):
    """Stored agent policy. user_id NULL = studio-wide default."""

    __tablename__ = "ai_policies"
    __table_args__ = (
        UniqueConstraint("studio_id", "user_id", name="uq_ai_policies_studio_user"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    studio_id: Mapped[str] = mapped_column(String(64), index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mode: Mapped[str] = mapped_column(String(16), default="read_only")
    authorities: Mapped[list[str]] = mapped_column(JSONB, default=list)
    restricted_fields: Mapped[list[str]] = mapped_column(JSONB, default=list)
    auto_approve_thresholds: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    email_domain_allowlist: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class ProposalRecord(Base):
    """Deferred write.

    Status lifecycle (terminal once resolved):
    - pending → approved (stored payload executed through the tool)
    - pending → rejected (nothing executed)
    """

    __tablename__ = "agent_proposals"
    __table_args__ = (
        Index("idx_agent_proposals_studio_created", "studio_id", "created_at"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_agent_proposals_status",
        ),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    studio_id: Mapped[str] = mapped_column(String(64))
    proposed_by: Mapped[str] = mapped_column(String(64))
    session_id: Mapped[str] = mapped_column(String(128))
    tool_name: Mapped[str] = mapped_column(String(64))
    action_kind: Mapped[str] = mapped_column(String(32))
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB)
    risk: Mapped[str] = mapped_column(String(8))
    reason: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(16), default="pending")
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class AuditLogRecord(Base):
    """Append-only audit entry. UPDATE/DELETE are rejected by a DB trigger."""

    __tablename__ = "agent_audit_log"
    __table_args__ = (
        Index("idx_agent_audit_log_studio_created", "studio_id", "created_at"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    studio_id: Mapped[str] = mapped_column(String(64))
    user_id: Mapped[str] = mapped_column(String(64))
    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tool_name: Mapped[str] = mapped_column(String(64))
    action_kind: Mapped[str] = mapped_column(String(32))
    decision: Mapped[str] = mapped_column(String(16))  # allow|deny|propose
    reason: Mapped[str] = mapped_column(String(48))
    # executed|denied|proposed|failed|rejected
    outcome: Mapped[str] = mapped_column(String(16))
    before_state: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    after_state: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    proposal_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
