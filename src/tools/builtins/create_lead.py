"""Create a lead unless one with the same email already exists in the studio."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from src.agent.guardrail import ActionRequest
from src.agent.policy import Authority
from src.tools.base import EMAIL_PATTERN, BaseTool, RiskLevel, email_domain

if TYPE_CHECKING:
    from src.agent.context import AgentContext
    from src.tools.context import ToolContext


class CreateLeadInput(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=128)
    last_name: str = Field(..., min_length=1, max_length=128)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=256)
    phone: str | None = Field(None, max_length=64)
    message: str | None = None
    source: str = "CRM Assistant"
    priority: Literal["low", "medium", "high"] = "medium"


class CreateLeadTool(BaseTool):
    """Guardrail-aware lead creation.

    Email is the de-duplication key within a studio, so concurrent calls for
    the same address are serialized.
    """

    @property
    def name(self) -> str:
        return "create_lead"

    @property
    def description(self) -> str:
        return "Create a new lead if it does not exist; otherwise return the existing lead."

    @property
    def input_model(self) -> type[BaseModel]:
        return CreateLeadInput

    @property
    def authority(self) -> Authority:
        return Authority.CREATE_LEAD

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    def describe_action(self, params: CreateLeadInput, context: ToolContext) -> ActionRequest:
        return ActionRequest(
            kind=self.authority,
            table="crm_leads",
            fields=tuple(sorted(params.model_fields_set)),
            email_domain=email_domain(params.email),
        )

    def serialization_key(self, params: CreateLeadInput, context: AgentContext) -> str:
        return f"crm_leads:{context.studio_id}:{params.email.lower()}"

    async def execute(self, params: CreateLeadInput, context: ToolContext) -> dict:
        email = params.email.lower()
        existing = await context.store.select("crm_leads", {"email": email}, limit=1)
        if existing:
            return {"status": "exists", "record": existing[0]}

        lead = await context.store.insert(
            "crm_leads",
            {
                "name": f"{params.first_name} {params.last_name}",
                "email": email,
                "phone": params.phone or "",
                "message": params.message or "",
                "source": params.source,
                "status": "new",
                "priority": params.priority,
                "assigned_to": context.user_id,
            },
        )
        return {"status": "created", "record": lead}
