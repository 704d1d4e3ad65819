from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from src.agent.policy import Authority
from src.tools.base import BaseTool, RiskLevel

if TYPE_CHECKING:
    from src.tools.context import ToolContext


class ListSessionsInput(BaseModel):
    client_id: str | None = None
    status: Literal["scheduled", "completed", "cancelled"] | None = None
    limit: int = Field(25, ge=1, le=100)


class ListSessionsTool(BaseTool):
    @property
    def name(self) -> str:
        return "list_sessions"

    @property
    def description(self) -> str:
        return "List photography sessions for the current studio, optionally for one client."

    @property
    def input_model(self) -> type[BaseModel]:
        return ListSessionsInput

    @property
    def authority(self) -> Authority:
        return Authority.READ_SESSIONS

    @property
    def is_write(self) -> bool:
        return False

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    async def execute(self, params: ListSessionsInput, context: ToolContext) -> dict:
        filters = params.model_dump(include={"client_id", "status"}, exclude_none=True)
        sessions = await context.store.select("crm_sessions", filters, limit=params.limit)
        return {"count": len(sessions), "sessions": sessions}
