"""Process-level wiring: build every shared dependency once at start-up."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from src.agent.agent import AgentLoop
from src.agent.context import AgentContext, build_agent_context
from src.agent.model_client import OpenAICompatModelClient
from src.agent.policy import PolicyStore
from src.config.settings import Settings, get_settings
from src.governance.audit import AuditLog
from src.governance.proposals import ProposalWorkflow
from src.infra.logging import setup_logging
from src.session.database import create_db_engine, ensure_schema, make_session_factory
from src.session.memory import WorkingMemoryStore
from src.tools.builtins import register_builtins
from src.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = structlog.get_logger()


@dataclass
class Runtime:
    settings: Settings
    engine: AsyncEngine
    db_session_factory: async_sessionmaker[AsyncSession]
    policy_store: PolicyStore
    registry: ToolRegistry
    audit_log: AuditLog
    memory_store: WorkingMemoryStore
    proposals: ProposalWorkflow
    agent_loop: AgentLoop

    async def context_for(
        self, *, studio_id: str, user_id: str, session_id: str | None = None
    ) -> AgentContext:
        """Build a fresh request context with the tenant's current policy."""
        return await build_agent_context(
            self.policy_store,
            studio_id=studio_id,
            user_id=user_id,
            session_id=session_id,
        )

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("runtime_closed")


async def build_runtime(settings: Settings | None = None) -> Runtime:
    """Create the shared dependency graph. The DB is mandatory; startup fails without it."""
    settings = settings or get_settings()
    setup_logging(
        json_output=settings.logging.json_output,
        log_level=settings.logging.level,
    )

    engine = await create_db_engine(settings.database)
    await ensure_schema(engine, settings.database.schema_)
    db_session_factory = make_session_factory(engine)
    logger.info("db_connected")

    registry = ToolRegistry()
    register_builtins(registry)

    audit_log = AuditLog(db_session_factory)
    memory_store = WorkingMemoryStore(db_session_factory)
    proposals = ProposalWorkflow(db_session_factory, registry, audit_log, memory_store)

    model_client = None
    if settings.openai.api_key:
        model_client = OpenAICompatModelClient.from_settings(settings.openai)
    else:
        logger.info("model_client_disabled", reason="no_api_key")

    agent_loop = AgentLoop(
        registry,
        db_session_factory,
        audit_log,
        proposals,
        memory_store,
        model_client=model_client,
        model=settings.openai.model,
        settings=settings.agent,
    )

    logger.info(
        "runtime_ready",
        tools=len(registry.list_tools()),
        llm_enabled=model_client is not None,
    )
    return Runtime(
        settings=settings,
        engine=engine,
        db_session_factory=db_session_factory,
        policy_store=PolicyStore(db_session_factory, settings.policy),
        registry=registry,
        audit_log=audit_log,
        memory_store=memory_store,
        proposals=proposals,
        agent_loop=agent_loop,
    )
