from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from src.agent.policy import Authority
from src.tools.base import BaseTool, RiskLevel

if TYPE_CHECKING:
    from src.tools.context import ToolContext


class ListInvoicesInput(BaseModel):
    client_id: str | None = None
    status: Literal["pending", "sent", "paid", "cancelled"] | None = None
    limit: int = Field(25, ge=1, le=100)


class ListInvoicesTool(BaseTool):
    @property
    def name(self) -> str:
        return "list_invoices"

    @property
    def description(self) -> str:
        return "List invoices for the current studio, optionally for one client or status."

    @property
    def input_model(self) -> type[BaseModel]:
        return ListInvoicesInput

    @property
    def authority(self) -> Authority:
        return Authority.READ_INVOICES

    @property
    def is_write(self) -> bool:
        return False

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    async def execute(self, params: ListInvoicesInput, context: ToolContext) -> dict:
        filters = params.model_dump(include={"client_id", "status"}, exclude_none=True)
        invoices = await context.store.select("crm_invoices", filters, limit=params.limit)
        return {"count": len(invoices), "invoices": invoices}
