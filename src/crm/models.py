"""SQLAlchemy 2.0 models for the CRM records the agent tools act on."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.constants import DB_SCHEMA
from src.session.models import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class ClientRecord(Base):
    __tablename__ = "crm_clients"
    __table_args__ = (
        Index("idx_crm_clients_studio_created", "studio_id", "created_at"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    studio_id: Mapped[str] = mapped_column(String(64))
    first_name: Mapped[str] = mapped_column(String(128), default="")
    last_name: Mapped[str] = mapped_column(String(128), default="")
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class LeadRecord(Base):
    __tablename__ = "crm_leads"
    __table_args__ = (
        Index("idx_crm_leads_studio_created", "studio_id", "created_at"),
        Index("idx_crm_leads_studio_email", "studio_id", "email"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    studio_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(256))
    email: Mapped[str] = mapped_column(String(256))
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # new|contacted|qualified|converted|closed
    status: Mapped[str] = mapped_column(String(16), default="new")
    priority: Mapped[str] = mapped_column(String(8), default="medium")
    assigned_to: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class InvoiceRecord(Base):
    __tablename__ = "crm_invoices"
    __table_args__ = (
        Index("idx_crm_invoices_studio_created", "studio_id", "created_at"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    studio_id: Mapped[str] = mapped_column(String(64))
    client_id: Mapped[str] = mapped_column(String(36), index=True)
    invoice_number: Mapped[str] = mapped_column(String(32))
    description: Mapped[str] = mapped_column(Text)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending|sent|paid|cancelled
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class PhotoSessionRecord(Base):
    """A booked photography session for a client."""

    __tablename__ = "crm_sessions"
    __table_args__ = (
        Index("idx_crm_sessions_studio_scheduled", "studio_id", "scheduled_at"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    studio_id: Mapped[str] = mapped_column(String(64))
    client_id: Mapped[str] = mapped_column(String(36), index=True)
    title: Mapped[str] = mapped_column(String(256))
    session_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    duration_minutes: Mapped[int | None] = mapped_column(nullable=True)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    # scheduled|completed|cancelled
    status: Mapped[str] = mapped_column(String(16), default="scheduled")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
