"""Create an invoice for a client of the studio."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from src.agent.guardrail import ActionRequest
from src.agent.policy import Authority
from src.infra.errors import ToolError
from src.tools.base import BaseTool, RiskLevel

if TYPE_CHECKING:
    from src.agent.context import AgentContext
    from src.tools.context import ToolContext


class CreateInvoiceInput(BaseModel):
    client_id: str = Field(..., min_length=1, max_length=36)
    description: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0, le=1_000_000)
    currency: str = Field("EUR", pattern=r"^[A-Z]{3}$")
    notes: str | None = None


def _invoice_number() -> str:
    return f"INV-{datetime.now(UTC):%Y%m%d}-{secrets.token_hex(2).upper()}"


class CreateInvoiceTool(BaseTool):
    """Monetary write: amount is the value compared to the auto-approve threshold."""

    @property
    def name(self) -> str:
        return "create_invoice"

    @property
    def description(self) -> str:
        return "Create an invoice with a description and amount for an existing client."

    @property
    def input_model(self) -> type[BaseModel]:
        return CreateInvoiceInput

    @property
    def authority(self) -> Authority:
        return Authority.SEND_INVOICE

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.high

    def describe_action(self, params: CreateInvoiceInput, context: ToolContext) -> ActionRequest:
        return ActionRequest(
            kind=self.authority,
            table="crm_invoices",
            fields=tuple(sorted(params.model_fields_set)),
            value=params.amount,
        )

    def serialization_key(self, params: CreateInvoiceInput, context: AgentContext) -> str:
        return f"crm_invoices:{context.studio_id}:{params.client_id}"

    async def execute(self, params: CreateInvoiceInput, context: ToolContext) -> dict:
        client = await context.store.get("crm_clients", params.client_id)
        if client is None:
            raise ToolError(f"Client not found: {params.client_id}", code="CLIENT_NOT_FOUND")

        invoice = await context.store.insert(
            "crm_invoices",
            {
                "client_id": params.client_id,
                "invoice_number": _invoice_number(),
                "description": params.description,
                "total": round(params.amount, 2),
                "currency": params.currency,
                "status": "pending",
                "notes": params.notes or "",
            },
        )
        return {"status": "created", "record": invoice}
