"""Shared pytest fixtures for studio agent tests.

Provides containerized PostgreSQL for integration tests via two modes:
1. TEST_DATABASE_* env vars present → connect to external PG (CI scenario)
2. Otherwise → testcontainers auto-starts a temporary PG container (local dev)

Integration tests are skipped when neither is available.
Safety: refuses to run against any database whose name doesn't contain '_test'.
"""

from __future__ import annotations

import asyncio
import os

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.constants import DB_SCHEMA
from src.session.database import ensure_schema
from src.session.models import Base

_TABLES = [
    "agent_memory_fields",
    "agent_memory_sessions",
    "agent_proposals",
    "ai_policies",
    "crm_clients",
    "crm_leads",
    "crm_invoices",
    "crm_sessions",
]


def _validate_test_db_name(name: str) -> None:
    """Safety: refuse to truncate a database whose name doesn't contain '_test'."""
    if "_test" not in name.lower():
        raise RuntimeError(
            f"Refusing to run tests against database '{name}': "
            "name must contain '_test' to prevent accidental data loss. "
            "Set TEST_DATABASE_NAME to a test-specific database."
        )


def _build_pg_url_from_env() -> str | None:
    """Build async PG URL from TEST_DATABASE_* env vars, or return None."""
    host = os.getenv("TEST_DATABASE_HOST")
    if host is None:
        return None
    port = os.getenv("TEST_DATABASE_PORT", "5432")
    user = os.getenv("TEST_DATABASE_USER", "postgres")
    password = os.getenv("TEST_DATABASE_PASSWORD", "")
    name = os.getenv("TEST_DATABASE_NAME", "studio_crm_test")
    _validate_test_db_name(name)
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


@pytest.fixture(scope="session")
def _pg_container():
    """Manage testcontainers PostgreSQL lifecycle.

    Yields (url, container) where container is None if using external PG.
    """
    url = _build_pg_url_from_env()
    if url is not None:
        yield url, None
        return

    try:
        from testcontainers.postgres import PostgresContainer

        container = PostgresContainer("postgres:16", dbname="studio_crm_test")
        container.start()
    except Exception as e:  # docker not reachable, image pull failed, ...
        pytest.skip(f"PostgreSQL not available for integration tests: {e}")

    host = container.get_container_host_ip()
    port = container.get_exposed_port(5432)
    user = container.username
    password = container.password
    dbname = container.dbname
    _validate_test_db_name(dbname)

    url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{dbname}"

    yield url, container

    container.stop()


@pytest.fixture(scope="session")
def pg_url(_pg_container) -> str:
    """Provide an async PostgreSQL URL for integration tests."""
    url, _ = _pg_container
    return url


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def db_engine(pg_url: str):
    """Create async engine, set up schema + tables + audit trigger. Tear down after session."""
    engine = create_async_engine(pg_url, echo=False)
    await ensure_schema(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.execute(text(f"DROP SCHEMA IF EXISTS {DB_SCHEMA} CASCADE"))

    await engine.dispose()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Provide an async session factory bound to the test engine."""
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True, loop_scope="session")
async def _integration_cleanup(request):
    """Truncate all tables after each integration test for isolation.

    Uses request.getfixturevalue() for lazy resolution: unit tests never
    trigger the db_session_factory → db_engine → _pg_container chain.
    """
    yield

    if not any(m.name == "integration" for m in request.node.iter_markers()):
        return
    if not asyncio.iscoroutinefunction(request.node.obj):
        return
    if "db_session_factory" not in request.fixturenames:
        return

    factory = request.getfixturevalue("db_session_factory")
    async with factory() as db_session:
        qualified = ", ".join(f"{DB_SCHEMA}.{t}" for t in _TABLES)
        await db_session.execute(text(f"TRUNCATE {qualified} CASCADE"))
        # TRUNCATE does not fire row-level DELETE triggers.
        await db_session.execute(text(f"TRUNCATE {DB_SCHEMA}.agent_audit_log"))
        await db_session.commit()


@pytest_asyncio.fixture
async def audit_log(db_session_factory: async_sessionmaker[AsyncSession]):
    from src.governance.audit import AuditLog

    return AuditLog(db_session_factory)


@pytest_asyncio.fixture
async def memory_store(db_session_factory: async_sessionmaker[AsyncSession]):
    from src.session.memory import WorkingMemoryStore

    return WorkingMemoryStore(db_session_factory)


@pytest.fixture
def tool_registry():
    from src.tools.builtins import register_builtins
    from src.tools.registry import ToolRegistry

    registry = ToolRegistry()
    register_builtins(registry)
    return registry


@pytest_asyncio.fixture
async def proposal_workflow(db_session_factory, tool_registry, audit_log, memory_store):
    from src.governance.proposals import ProposalWorkflow

    return ProposalWorkflow(db_session_factory, tool_registry, audit_log, memory_store)


@pytest_asyncio.fixture
async def agent_loop(
    db_session_factory, tool_registry, audit_log, proposal_workflow, memory_store
):
    """AgentLoop wired to the test database with all built-in tools."""
    from src.agent.agent import AgentLoop

    return AgentLoop(
        tool_registry,
        db_session_factory,
        audit_log,
        proposal_workflow,
        memory_store,
    )
