"""Tests for ensure_schema: idempotent table and audit trigger DDL.

Marked as integration: requires a live PostgreSQL instance.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.constants import DB_SCHEMA
from src.session.database import ensure_schema

pytestmark = [pytest.mark.integration, pytest.mark.asyncio(loop_scope="session")]


async def test_ensure_schema_is_idempotent(db_engine: AsyncEngine) -> None:
    await ensure_schema(db_engine, DB_SCHEMA)
    await ensure_schema(db_engine, DB_SCHEMA)

    async with db_engine.connect() as conn:
        result = await conn.execute(
            text(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = :schema"
            ),
            {"schema": DB_SCHEMA},
        )
        tables = {row.table_name for row in result}

    assert {
        "ai_policies",
        "agent_audit_log",
        "agent_proposals",
        "crm_clients",
        "crm_leads",
        "crm_invoices",
        "crm_sessions",
    } <= tables


async def test_audit_trigger_installed_once(db_engine: AsyncEngine) -> None:
    await ensure_schema(db_engine, DB_SCHEMA)

    async with db_engine.connect() as conn:
        result = await conn.execute(
            text(
                "SELECT count(*) FROM information_schema.triggers "
                "WHERE event_object_schema = :schema "
                "AND trigger_name = 'trg_agent_audit_log_immutable'"
            ),
            {"schema": DB_SCHEMA},
        )
        # one row per event: UPDATE and DELETE
        assert result.scalar_one() == 2
