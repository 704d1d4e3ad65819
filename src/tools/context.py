from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from src.agent.context import AgentContext
    from src.crm.store import TenantStore
    from src.session.memory import WorkingMemoryStore


@dataclass(frozen=True)
class ToolContext:
    """Runtime context injected into tool execution by AgentLoop.

    store is already bound to agent.studio_id. db is the transaction shared
    with the audit entry for this call; tools MUST NOT commit it.
    """

    agent: AgentContext
    store: TenantStore
    memory: WorkingMemoryStore
    db: AsyncSession

    @property
    def studio_id(self) -> str:
        return self.agent.studio_id

    @property
    def user_id(self) -> str:
        return self.agent.user_id

    @property
    def session_id(self) -> str:
        return self.agent.session_id
