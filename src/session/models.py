"""SQLAlchemy 2.0 async models for conversation working memory."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKeyConstraint, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.constants import DB_SCHEMA


class Base(DeclarativeBase):
    pass


class MemorySessionRecord(Base):
    """One row per (tenant, conversation) once memory has been written."""

    __tablename__ = "agent_memory_sessions"
    __table_args__ = {"schema": DB_SCHEMA}

    studio_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class MemoryFieldRecord(Base):
    """One row per memory field so concurrent writers merge per field."""

    __tablename__ = "agent_memory_fields"
    __table_args__ = (
        ForeignKeyConstraint(
            ["studio_id", "session_id"],
            [
                f"{DB_SCHEMA}.agent_memory_sessions.studio_id",
                f"{DB_SCHEMA}.agent_memory_sessions.session_id",
            ],
            ondelete="CASCADE",
        ),
        {"schema": DB_SCHEMA},
    )

    studio_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[Any] = mapped_column(JSONB, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
