"""Integration tests for AuditLog: append, tenant/time-range query, immutability."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from src.constants import DB_SCHEMA
from src.governance.audit import AuditEntry, AuditLog, AuditOutcome

pytestmark = [pytest.mark.integration, pytest.mark.asyncio(loop_scope="session")]


def _entry(studio_id: str = "st1", **overrides) -> AuditEntry:
    data = {
        "studio_id": studio_id,
        "user_id": "u1",
        "session_id": "s1",
        "tool_name": "update_client",
        "action_kind": "UPDATE_CLIENT",
        "decision": "allow",
        "reason": "full_write",
        "outcome": AuditOutcome.executed,
        "before_state": {"city": "Paris"},
        "after_state": {"city": "Lyon"},
    }
    data.update(overrides)
    return AuditEntry(**data)


class TestRecord:
    async def test_own_transaction(self, audit_log: AuditLog) -> None:
        entry_id = await audit_log.record(_entry())
        assert entry_id > 0

        (view,) = await audit_log.query("st1")
        assert view.id == entry_id
        assert view.after_state == {"city": "Lyon"}
        assert view.outcome == "executed"

    async def test_joins_caller_transaction(self, audit_log: AuditLog, db_session_factory) -> None:
        async with db_session_factory() as db:
            await audit_log.record(_entry(), db=db)
            await db.rollback()

        assert await audit_log.query("st1") == []


class TestQuery:
    async def test_scoped_to_tenant(self, audit_log: AuditLog) -> None:
        await audit_log.record(_entry("st1"))
        await audit_log.record(_entry("st2"))

        views = await audit_log.query("st1")
        assert {v.studio_id for v in views} == {"st1"}

    async def test_time_range_and_order(self, audit_log: AuditLog) -> None:
        first = await audit_log.record(_entry(tool_name="list_clients"))
        second = await audit_log.record(_entry(tool_name="create_lead"))

        now = datetime.now(UTC)
        views = await audit_log.query(
            "st1", since=now - timedelta(minutes=5), until=now + timedelta(minutes=5)
        )
        assert [v.id for v in views] == [second, first]

        assert await audit_log.query("st1", until=now - timedelta(minutes=5)) == []

    async def test_limit(self, audit_log: AuditLog) -> None:
        for _ in range(3):
            await audit_log.record(_entry())
        assert len(await audit_log.query("st1", limit=2)) == 2


class TestImmutability:
    async def test_update_rejected(self, audit_log: AuditLog, db_session_factory) -> None:
        entry_id = await audit_log.record(_entry())
        async with db_session_factory() as db:
            with pytest.raises(DBAPIError, match="append-only"):
                await db.execute(
                    text(f"UPDATE {DB_SCHEMA}.agent_audit_log SET reason = 'x' WHERE id = :id"),
                    {"id": entry_id},
                )

    async def test_delete_rejected(self, audit_log: AuditLog, db_session_factory) -> None:
        entry_id = await audit_log.record(_entry())
        async with db_session_factory() as db:
            with pytest.raises(DBAPIError, match="append-only"):
                await db.execute(
                    text(f"DELETE FROM {DB_SCHEMA}.agent_audit_log WHERE id = :id"),
                    {"id": entry_id},
                )
