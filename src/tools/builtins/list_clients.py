"""List clients of the current studio."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from src.agent.policy import Authority
from src.tools.base import BaseTool, RiskLevel

if TYPE_CHECKING:
    from src.tools.context import ToolContext


class ListClientsInput(BaseModel):
    search: str | None = Field(None, description="Match against name or email.")
    limit: int = Field(25, ge=1, le=100)


class ListClientsTool(BaseTool):
    @property
    def name(self) -> str:
        return "list_clients"

    @property
    def description(self) -> str:
        return "List clients for the current studio. Optional search & limit."

    @property
    def input_model(self) -> type[BaseModel]:
        return ListClientsInput

    @property
    def authority(self) -> Authority:
        return Authority.READ_CLIENTS

    @property
    def is_write(self) -> bool:
        return False

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    async def execute(self, params: ListClientsInput, context: ToolContext) -> dict:
        clients = await context.store.select(
            "crm_clients",
            limit=params.limit,
            search=params.search,
            search_columns=("first_name", "last_name", "email"),
        )
        return {"count": len(clients), "clients": clients}
