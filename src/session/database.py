"""Async database engine and session factory for PostgreSQL persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

import src.crm.models  # noqa: F401  register CRM tables in Base.metadata
import src.governance.models  # noqa: F401  register policy/audit/proposal tables
from src.constants import DB_SCHEMA
from src.session.models import Base

if TYPE_CHECKING:
    from src.config.settings import DatabaseSettings

logger = structlog.get_logger()


def database_url(settings: DatabaseSettings, *, driver: str = "asyncpg") -> str:
    return (
        f"postgresql+{driver}://{settings.user}:{settings.password}"
        f"@{settings.host}:{settings.port}/{settings.name}"
    )


async def create_db_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Create an async SQLAlchemy engine from DatabaseSettings."""
    engine = create_async_engine(
        database_url(settings),
        pool_size=5,
        max_overflow=10,
        connect_args={"server_settings": {"search_path": f"{settings.schema_}, public"}},
    )
    logger.info("db_engine_created", host=settings.host, database=settings.name)
    return engine


async def ensure_schema(engine: AsyncEngine, schema: str = DB_SCHEMA) -> None:
    """Ensure the target schema exists, then create all tables and the audit guard trigger."""
    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        await conn.run_sync(Base.metadata.create_all)

        # Audit rows are immutable once written.
        # Three separate execute() calls to avoid asyncpg multi-statement issues.
        await conn.execute(text(f"""
            CREATE OR REPLACE FUNCTION {schema}.agent_audit_log_immutable()
            RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'agent_audit_log is append-only';
            END;
            $$ LANGUAGE plpgsql
        """))

        await conn.execute(text(
            f"DROP TRIGGER IF EXISTS trg_agent_audit_log_immutable"
            f" ON {schema}.agent_audit_log"
        ))

        await conn.execute(text(f"""
            CREATE TRIGGER trg_agent_audit_log_immutable
            BEFORE UPDATE OR DELETE ON {schema}.agent_audit_log
            FOR EACH ROW
            EXECUTE FUNCTION {schema}.agent_audit_log_immutable()
        """))

    logger.info("db_schema_ensured", schema=schema)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create an async session factory bound to the engine."""
    return async_sessionmaker(engine, expire_on_commit=False)
