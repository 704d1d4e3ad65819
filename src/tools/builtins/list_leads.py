"""List leads of the current studio."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from src.agent.policy import Authority
from src.tools.base import BaseTool, RiskLevel

if TYPE_CHECKING:
    from src.tools.context import ToolContext

LeadStatus = Literal["new", "contacted", "qualified", "converted", "closed"]


class ListLeadsInput(BaseModel):
    search: str | None = Field(None, description="Match against name, email or message.")
    status: LeadStatus | None = None
    limit: int = Field(25, ge=1, le=100)


class ListLeadsTool(BaseTool):
    @property
    def name(self) -> str:
        return "list_leads"

    @property
    def description(self) -> str:
        return "List leads for the current studio. Optional status filter, search & limit."

    @property
    def input_model(self) -> type[BaseModel]:
        return ListLeadsInput

    @property
    def authority(self) -> Authority:
        return Authority.READ_LEADS

    @property
    def is_write(self) -> bool:
        return False

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    async def execute(self, params: ListLeadsInput, context: ToolContext) -> dict:
        filters = {"status": params.status} if params.status else None
        leads = await context.store.select(
            "crm_leads",
            filters,
            limit=params.limit,
            search=params.search,
            search_columns=("name", "email", "message"),
        )
        return {"count": len(leads), "leads": leads}
