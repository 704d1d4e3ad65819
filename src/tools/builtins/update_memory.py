"""Update working memory: selected client, current goal, preferences, context."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from src.agent.policy import Authority
from src.infra.errors import SessionNotFoundError, ToolError
from src.tools.base import BaseTool, RiskLevel

if TYPE_CHECKING:
    from src.agent.context import AgentContext
    from src.tools.context import ToolContext


class UpdateMemoryInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    selected_client_id: str | None = None
    current_goal: str | None = None
    preferences: dict[str, Any] | None = None
    context: dict[str, Any] | None = None


class UpdateMemoryTool(BaseTool):
    """Merge the provided fields into this session's working memory.

    Session is read from context.session_id; tools never pick another one.
    """

    @property
    def name(self) -> str:
        return "update_memory"

    @property
    def description(self) -> str:
        return "Update working memory with the selected client, current goal, preferences or context."

    @property
    def input_model(self) -> type[BaseModel]:
        return UpdateMemoryInput

    @property
    def authority(self) -> Authority:
        return Authority.UPDATE_MEMORY

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    def serialization_key(self, params: UpdateMemoryInput, context: AgentContext) -> str:
        return f"memory:{context.studio_id}:{context.session_id}"

    async def snapshot(self, params: UpdateMemoryInput, context: ToolContext) -> dict | None:
        try:
            memory = await context.memory.get(
                context.studio_id, context.session_id, db=context.db
            )
        except SessionNotFoundError:
            return {}
        return dict(memory.fields)

    async def execute(self, params: UpdateMemoryInput, context: ToolContext) -> dict:
        partial = params.model_dump(exclude_none=True)
        if "selected_client_id" in partial:
            client = await context.store.get("crm_clients", partial["selected_client_id"])
            if client is None:
                raise ToolError(
                    f"Client not found: {partial['selected_client_id']}",
                    code="CLIENT_NOT_FOUND",
                )

        merged = await context.memory.update(
            context.studio_id,
            context.session_id,
            partial,
            user_id=context.user_id,
            db=context.db,
        )
        return {"updated": sorted(partial), "memory": merged.fields}
