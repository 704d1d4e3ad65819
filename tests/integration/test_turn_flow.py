"""End-to-end tool turns through AgentLoop.run_turn against PostgreSQL.

Covers the full decision path: tenant isolation, restricted-field denial,
threshold auto-approval and the audit trail each outcome leaves.
"""

from __future__ import annotations

import pytest

from src.agent.agent import AgentLoop, ToolCallRequest
from src.agent.context import AgentContext
from src.agent.outcomes import OutcomeStatus
from src.agent.policy import Policy
from src.crm.store import TenantStore
from src.governance.audit import AuditLog

pytestmark = [pytest.mark.integration, pytest.mark.asyncio(loop_scope="session")]

_ALL = [
    "READ_CLIENTS",
    "READ_LEADS",
    "READ_INVOICES",
    "READ_SESSIONS",
    "DRAFT_EMAIL",
    "UPDATE_MEMORY",
    "CREATE_LEAD",
    "UPDATE_CLIENT",
    "SEND_INVOICE",
]


def _ctx(mode: str = "full_write", *, studio_id: str = "st1", **policy) -> AgentContext:
    return AgentContext(
        studio_id=studio_id,
        user_id="u1",
        session_id="s1",
        policy=Policy.from_config(mode=mode, authorities=_ALL, **policy),
    )


async def _seed_client(db_session_factory, studio_id: str, **values) -> dict:
    async with db_session_factory() as db:
        row = await TenantStore(db, studio_id).insert(
            "crm_clients", {"first_name": "Jane", "last_name": "Doe", **values}
        )
        await db.commit()
    return row


class TestWrites:
    async def test_full_write_create_lead(
        self, agent_loop: AgentLoop, audit_log: AuditLog, db_session_factory
    ) -> None:
        (outcome,) = await agent_loop.run_turn(
            _ctx(),
            [ToolCallRequest("c1", "create_lead", {
                "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com",
            })],
        )

        assert outcome.status == OutcomeStatus.ok
        assert outcome.reason_code == "full_write"
        assert outcome.data["status"] == "created"

        async with db_session_factory() as db:
            (lead,) = await TenantStore(db, "st1").select("crm_leads")
        assert lead["name"] == "Ada Lovelace"

        (entry,) = await audit_log.query("st1")
        assert entry.outcome == "executed"
        assert entry.tool_name == "create_lead"
        assert entry.before_state is None
        assert entry.after_state["record"]["id"] == lead["id"]

    async def test_same_email_twice_in_one_turn_creates_once(
        self, agent_loop: AgentLoop, db_session_factory
    ) -> None:
        args = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"}
        outcomes = await agent_loop.run_turn(
            _ctx(),
            [
                ToolCallRequest("c1", "create_lead", args),
                ToolCallRequest("c2", "create_lead", {**args, "email": "ADA@example.com"}),
            ],
        )

        assert [o.data["status"] for o in outcomes] == ["created", "exists"]
        async with db_session_factory() as db:
            assert len(await TenantStore(db, "st1").select("crm_leads")) == 1

    async def test_update_client_records_before_and_after(
        self, agent_loop: AgentLoop, audit_log: AuditLog, db_session_factory
    ) -> None:
        client = await _seed_client(db_session_factory, "st1", city="Paris")

        (outcome,) = await agent_loop.run_turn(
            _ctx(),
            [ToolCallRequest("c1", "update_client", {
                "client_id": client["id"], "updates": {"city": "Lyon"},
            })],
        )

        assert outcome.status == OutcomeStatus.ok
        (entry,) = await audit_log.query("st1")
        assert entry.before_state["city"] == "Paris"
        assert entry.after_state["record"]["city"] == "Lyon"


class TestDenials:
    async def test_tenant_override_denied(
        self, agent_loop: AgentLoop, audit_log: AuditLog, db_session_factory
    ) -> None:
        client = await _seed_client(db_session_factory, "st1")

        (outcome,) = await agent_loop.run_turn(
            _ctx(),
            [ToolCallRequest("c1", "update_client", {
                "client_id": client["id"], "updates": {"studio_id": "st2"},
            })],
        )

        assert outcome.status == OutcomeStatus.denied
        assert outcome.reason_code == "restricted_field"

        async with db_session_factory() as db:
            row = await TenantStore(db, "st1").get("crm_clients", client["id"])
        assert row is not None

        (entry,) = await audit_log.query("st1")
        assert entry.outcome == "denied"
        assert entry.decision == "deny"

    async def test_read_only_denies_writes(
        self, agent_loop: AgentLoop, db_session_factory
    ) -> None:
        (outcome,) = await agent_loop.run_turn(
            _ctx("read_only"),
            [ToolCallRequest("c1", "create_lead", {
                "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com",
            })],
        )

        assert outcome.status == OutcomeStatus.denied
        async with db_session_factory() as db:
            assert await TenantStore(db, "st1").select("crm_leads") == []

    async def test_unknown_tool_not_audited(
        self, agent_loop: AgentLoop, audit_log: AuditLog
    ) -> None:
        (outcome,) = await agent_loop.run_turn(
            _ctx(), [ToolCallRequest("c1", "delete_everything", {})]
        )

        assert outcome.status == OutcomeStatus.unknown_tool
        assert await audit_log.query("st1") == []


class TestIsolation:
    async def test_list_clients_sees_only_own_tenant(
        self, agent_loop: AgentLoop, db_session_factory
    ) -> None:
        await _seed_client(db_session_factory, "st2", first_name="Theirs")

        (outcome,) = await agent_loop.run_turn(
            _ctx(), [ToolCallRequest("c1", "list_clients", {})]
        )

        assert outcome.status == OutcomeStatus.ok
        assert outcome.reason_code == "read_access"
        assert outcome.data == {"count": 0, "clients": []}

    async def test_update_other_tenant_client_fails(
        self, agent_loop: AgentLoop, audit_log: AuditLog, db_session_factory
    ) -> None:
        theirs = await _seed_client(db_session_factory, "st2", city="Paris")

        (outcome,) = await agent_loop.run_turn(
            _ctx(),
            [ToolCallRequest("c1", "update_client", {
                "client_id": theirs["id"], "updates": {"city": "Lyon"},
            })],
        )

        assert outcome.status == OutcomeStatus.execution_failed
        assert outcome.reason_code == "CLIENT_NOT_FOUND"

        async with db_session_factory() as db:
            row = await TenantStore(db, "st2").get("crm_clients", theirs["id"])
        assert row["city"] == "Paris"

        (entry,) = await audit_log.query("st1")
        assert entry.outcome == "failed"
        assert await audit_log.query("st2") == []

    async def test_list_sessions_sees_only_own_tenant(
        self, agent_loop: AgentLoop, db_session_factory
    ) -> None:
        mine = await _seed_client(db_session_factory, "st1")
        theirs = await _seed_client(db_session_factory, "st2")
        async with db_session_factory() as db:
            await TenantStore(db, "st1").insert(
                "crm_sessions", {"client_id": mine["id"], "title": "Family portraits"}
            )
            await TenantStore(db, "st2").insert(
                "crm_sessions", {"client_id": theirs["id"], "title": "Wedding"}
            )
            await db.commit()

        (outcome,) = await agent_loop.run_turn(
            _ctx("read_only"), [ToolCallRequest("c1", "list_sessions", {})]
        )

        assert outcome.status == OutcomeStatus.ok
        assert outcome.reason_code == "read_access"
        assert outcome.data["count"] == 1
        (session,) = outcome.data["sessions"]
        assert session["title"] == "Family portraits"
        assert session["status"] == "scheduled"


class TestThresholds:
    async def test_invoice_under_threshold_executes(
        self, agent_loop: AgentLoop, db_session_factory
    ) -> None:
        client = await _seed_client(db_session_factory, "st1")

        (outcome,) = await agent_loop.run_turn(
            _ctx("guarded_write", auto_approve_thresholds={"SEND_INVOICE": 100}),
            [ToolCallRequest("c1", "create_invoice", {
                "client_id": client["id"], "description": "Prints", "amount": 50,
            })],
        )

        assert outcome.status == OutcomeStatus.ok
        assert outcome.reason_code == "under_auto_approve_threshold"
        async with db_session_factory() as db:
            (invoice,) = await TenantStore(db, "st1").select("crm_invoices")
        assert invoice["total"] == 50.0

    async def test_invoice_over_threshold_proposed(
        self, agent_loop: AgentLoop, proposal_workflow, db_session_factory
    ) -> None:
        client = await _seed_client(db_session_factory, "st1")

        (outcome,) = await agent_loop.run_turn(
            _ctx("guarded_write", auto_approve_thresholds={"SEND_INVOICE": 100}),
            [ToolCallRequest("c1", "create_invoice", {
                "client_id": client["id"], "description": "Album", "amount": 500,
            })],
        )

        assert outcome.status == OutcomeStatus.proposed
        proposal = await proposal_workflow.get("st1", outcome.proposal_id)
        assert proposal.payload["amount"] == 500
        async with db_session_factory() as db:
            assert await TenantStore(db, "st1").select("crm_invoices") == []


class TestWorkingMemory:
    async def test_update_memory_tool_merges(
        self, agent_loop: AgentLoop, memory_store, db_session_factory
    ) -> None:
        client = await _seed_client(db_session_factory, "st1")
        outcomes = await agent_loop.run_turn(
            _ctx("read_only"),
            [
                ToolCallRequest("c1", "update_memory", {"current_goal": "find clients"}),
                ToolCallRequest("c2", "update_memory", {"selected_client_id": client["id"]}),
            ],
        )

        assert all(o.status == OutcomeStatus.ok for o in outcomes)
        memory = await memory_store.get("st1", "s1")
        assert memory.current_goal == "find clients"
        assert memory.selected_client_id == client["id"]


class TestDraftEmail:
    async def test_draft_for_lead_in_read_only(
        self, agent_loop: AgentLoop, audit_log: AuditLog, db_session_factory
    ) -> None:
        async with db_session_factory() as db:
            lead = await TenantStore(db, "st1").insert(
                "crm_leads", {"name": "Ada Lovelace", "email": "ada@example.com"}
            )
            await db.commit()

        (outcome,) = await agent_loop.run_turn(
            _ctx("read_only"),
            [ToolCallRequest("c1", "draft_email", {
                "to": "ada@example.com",
                "subject": "Your session",
                "body_markdown": "**Thanks** for booking",
                "contact_id": lead["id"],
            })],
        )

        assert outcome.status == OutcomeStatus.ok
        assert outcome.data["to_name"] == "Ada Lovelace"
        assert outcome.data["body_html"] == "<strong>Thanks</strong> for booking"

        (entry,) = await audit_log.query("st1")
        assert entry.outcome == "executed"
        assert entry.after_state is None

    async def test_recipient_domain_outside_allowlist_denied(
        self, agent_loop: AgentLoop, audit_log: AuditLog
    ) -> None:
        (outcome,) = await agent_loop.run_turn(
            _ctx(email_domain_allowlist={"DRAFT_EMAIL": ["example.com"]}),
            [ToolCallRequest("c1", "draft_email", {
                "to": "someone@elsewhere.org",
                "subject": "Hello",
                "body_markdown": "Hi",
            })],
        )

        assert outcome.status == OutcomeStatus.denied
        assert outcome.reason_code == "domain_not_permitted"

        (entry,) = await audit_log.query("st1")
        assert entry.decision == "deny"
        assert entry.tool_name == "draft_email"

    async def test_contact_from_other_tenant_not_found(
        self, agent_loop: AgentLoop, db_session_factory
    ) -> None:
        theirs = await _seed_client(db_session_factory, "st2", email="x@example.com")

        (outcome,) = await agent_loop.run_turn(
            _ctx(),
            [ToolCallRequest("c1", "draft_email", {
                "to": "x@example.com",
                "subject": "Hello",
                "body_markdown": "Hi",
                "contact_id": theirs["id"],
            })],
        )

        assert outcome.status == OutcomeStatus.execution_failed
        assert outcome.reason_code == "CONTACT_NOT_FOUND"
