"""Update fields of one client record."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.agent.guardrail import ActionRequest
from src.agent.policy import Authority
from src.infra.errors import ToolError
from src.tools.base import EMAIL_PATTERN, BaseTool, RiskLevel, email_domain

if TYPE_CHECKING:
    from src.agent.context import AgentContext
    from src.tools.context import ToolContext


class ClientUpdates(BaseModel):
    """Patchable client columns.

    studio_id is part of the record shape so an override attempt reaches the
    guardrail (and is denied there) instead of being silently dropped.
    """

    model_config = ConfigDict(extra="forbid")

    first_name: str | None = Field(None, min_length=1, max_length=128)
    last_name: str | None = Field(None, min_length=1, max_length=128)
    email: str | None = Field(None, pattern=EMAIL_PATTERN, max_length=256)
    phone: str | None = Field(None, max_length=64)
    address: str | None = None
    city: str | None = Field(None, max_length=128)
    notes: str | None = None
    status: Literal["active", "inactive", "archived"] | None = None
    studio_id: str | None = None


class UpdateClientInput(BaseModel):
    client_id: str = Field(..., min_length=1, max_length=36)
    updates: ClientUpdates

    @model_validator(mode="after")
    def _require_updates(self) -> UpdateClientInput:
        if not self.updates.model_fields_set:
            raise ValueError("At least one field to update is required")
        return self


class UpdateClientTool(BaseTool):
    @property
    def name(self) -> str:
        return "update_client"

    @property
    def description(self) -> str:
        return "Update specific client fields. Restricted fields are rejected by policy."

    @property
    def input_model(self) -> type[BaseModel]:
        return UpdateClientInput

    @property
    def authority(self) -> Authority:
        return Authority.UPDATE_CLIENT

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.medium

    def describe_action(self, params: UpdateClientInput, context: ToolContext) -> ActionRequest:
        fields = params.updates.model_fields_set
        return ActionRequest(
            kind=self.authority,
            table="crm_clients",
            fields=tuple(sorted(fields)),
            email_domain=email_domain(params.updates.email) if "email" in fields else None,
        )

    def serialization_key(self, params: UpdateClientInput, context: AgentContext) -> str:
        return f"crm_clients:{context.studio_id}:{params.client_id}"

    async def snapshot(self, params: UpdateClientInput, context: ToolContext) -> dict | None:
        return await context.store.get("crm_clients", params.client_id, for_update=True)

    async def execute(self, params: UpdateClientInput, context: ToolContext) -> dict:
        patch = params.updates.model_dump(exclude_unset=True)
        updated = await context.store.update("crm_clients", params.client_id, patch)
        if updated is None:
            raise ToolError(f"Client not found: {params.client_id}", code="CLIENT_NOT_FOUND")
        return {"status": "updated", "updated_fields": sorted(patch), "record": updated}
