"""add crm_sessions

Revision ID: 7b4d2a6e9c15
Revises: 3a7c1e9f2b40
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "7b4d2a6e9c15"
down_revision = "3a7c1e9f2b40"
branch_labels = None
depends_on = None

SCHEMA = "studio_agent"


def upgrade() -> None:
    op.create_table(
        "crm_sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("studio_id", sa.String(length=64), nullable=False),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("session_type", sa.String(length=64), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="scheduled"),
        sa.Column("notes", sa.Text(), nullable=True),
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
        sa.PrimaryKeyConstraint("id"),
        schema=SCHEMA,
    )
    op.create_index(
        "idx_crm_sessions_studio_scheduled",
        "crm_sessions",
        ["studio_id", "scheduled_at"],
        schema=SCHEMA,
    )
    op.create_index(
        "ix_crm_sessions_client_id", "crm_sessions", ["client_id"], schema=SCHEMA
    )


def downgrade() -> None:
    op.drop_index("ix_crm_sessions_client_id", table_name="crm_sessions", schema=SCHEMA)
    op.drop_index(
        "idx_crm_sessions_studio_scheduled", table_name="crm_sessions", schema=SCHEMA
    )
    op.drop_table("crm_sessions", schema=SCHEMA)
