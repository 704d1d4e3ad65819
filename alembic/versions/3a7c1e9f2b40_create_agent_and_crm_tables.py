"""create CRM, policy, proposal, audit and working-memory tables

Revision ID: 3a7c1e9f2b40
Revises:
Create Date: 2026-10-19

agent_audit_log is append-only: a trigger rejects UPDATE and DELETE.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = "3a7c1e9f2b40"
down_revision = None
branch_labels = None
depends_on = None

SCHEMA = "studio_agent"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "ai_policies",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("studio_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("mode", sa.String(length=16), nullable=False, server_default="read_only"),
        sa.Column("authorities", JSONB(), nullable=False, server_default="[]"),
        sa.Column("restricted_fields", JSONB(), nullable=False, server_default="[]"),
        sa.Column("auto_approve_thresholds", JSONB(), nullable=False, server_default="{}"),
        sa.Column("email_domain_allowlist", JSONB(), nullable=False, server_default="{}"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("studio_id", "user_id", name="uq_ai_policies_studio_user"),
        schema=SCHEMA,
    )
    op.create_index("ix_ai_policies_studio_id", "ai_policies", ["studio_id"], schema=SCHEMA)

    op.create_table(
        "crm_clients",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("studio_id", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=256), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        schema=SCHEMA,
    )
    op.create_index(
        "idx_crm_clients_studio_created",
        "crm_clients",
        ["studio_id", "created_at"],
        schema=SCHEMA,
    )

    op.create_table(
        "crm_leads",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("studio_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("email", sa.String(length=256), nullable=False),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="new"),
        sa.Column("priority", sa.String(length=8), nullable=False, server_default="medium"),
        sa.Column("assigned_to", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        schema=SCHEMA,
    )
    op.create_index(
        "idx_crm_leads_studio_created", "crm_leads", ["studio_id", "created_at"], schema=SCHEMA
    )
    op.create_index(
        "idx_crm_leads_studio_email", "crm_leads", ["studio_id", "email"], schema=SCHEMA
    )

    op.create_table(
        "crm_invoices",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("studio_id", sa.String(length=64), nullable=False),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column("invoice_number", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        schema=SCHEMA,
    )
    op.create_index(
        "idx_crm_invoices_studio_created",
        "crm_invoices",
        ["studio_id", "created_at"],
        schema=SCHEMA,
    )
    op.create_index(
        "ix_crm_invoices_client_id", "crm_invoices", ["client_id"], schema=SCHEMA
    )

    op.create_table(
        "agent_proposals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("studio_id", sa.String(length=64), nullable=False),
        sa.Column("proposed_by", sa.String(length=64), nullable=False),
        sa.Column("session_id", sa.String(length=128), nullable=False),
        sa.Column("tool_name", sa.String(length=64), nullable=False),
        sa.Column("action_kind", sa.String(length=32), nullable=False),
        sa.Column("payload", JSONB(), nullable=False),
        sa.Column("risk", sa.String(length=8), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("reviewed_by", sa.String(length=64), nullable=True),
        sa.Column("review_note", sa.Text(), nullable=True),
        sa.Column("result", JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_agent_proposals_status",
        ),
        schema=SCHEMA,
    )
    op.create_index(
        "idx_agent_proposals_studio_created",
        "agent_proposals",
        ["studio_id", "created_at"],
        schema=SCHEMA,
    )

    op.create_table(
        "agent_audit_log",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("studio_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("session_id", sa.String(length=128), nullable=True),
        sa.Column("tool_name", sa.String(length=64), nullable=False),
        sa.Column("action_kind", sa.String(length=32), nullable=False),
        sa.Column("decision", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.String(length=48), nullable=False),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("before_state", JSONB(), nullable=True),
        sa.Column("after_state", JSONB(), nullable=True),
        sa.Column("proposal_id", sa.String(length=36), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        schema=SCHEMA,
    )
    op.create_index(
        "idx_agent_audit_log_studio_created",
        "agent_audit_log",
        ["studio_id", "created_at"],
        schema=SCHEMA,
    )

    op.execute(f"""
        CREATE OR REPLACE FUNCTION {SCHEMA}.agent_audit_log_immutable()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'agent_audit_log is append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute(f"""
        CREATE TRIGGER trg_agent_audit_log_immutable
        BEFORE UPDATE OR DELETE ON {SCHEMA}.agent_audit_log
        FOR EACH ROW
        EXECUTE FUNCTION {SCHEMA}.agent_audit_log_immutable()
    """)

    op.create_table(
        "agent_memory_sessions",
        sa.Column("studio_id", sa.String(length=64), nullable=False),
        sa.Column("session_id", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("studio_id", "session_id"),
        schema=SCHEMA,
    )

    op.create_table(
        "agent_memory_fields",
        sa.Column("studio_id", sa.String(length=64), nullable=False),
        sa.Column("session_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("value", JSONB(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("studio_id", "session_id", "name"),
        sa.ForeignKeyConstraint(
            ["studio_id", "session_id"],
            [f"{SCHEMA}.agent_memory_sessions.studio_id", f"{SCHEMA}.agent_memory_sessions.session_id"],
            ondelete="CASCADE",
        ),
        schema=SCHEMA,
    )


def downgrade() -> None:
    op.drop_table("agent_memory_fields", schema=SCHEMA)
    op.drop_table("agent_memory_sessions", schema=SCHEMA)
    op.execute(
        f"DROP TRIGGER IF EXISTS trg_agent_audit_log_immutable ON {SCHEMA}.agent_audit_log"
    )
    op.execute(f"DROP FUNCTION IF EXISTS {SCHEMA}.agent_audit_log_immutable()")
    op.drop_index("idx_agent_audit_log_studio_created", table_name="agent_audit_log", schema=SCHEMA)
    op.drop_table("agent_audit_log", schema=SCHEMA)
    op.drop_index(
        "idx_agent_proposals_studio_created", table_name="agent_proposals", schema=SCHEMA
    )
    op.drop_table("agent_proposals", schema=SCHEMA)
    op.drop_table("crm_invoices", schema=SCHEMA)
    op.drop_table("crm_leads", schema=SCHEMA)
    op.drop_table("crm_clients", schema=SCHEMA)
    op.drop_table("ai_policies", schema=SCHEMA)
