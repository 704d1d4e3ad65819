"""Compose an email preview for a lead or client. Nothing is sent."""

from __future__ import annotations

import html
import re
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from src.agent.guardrail import ActionRequest
from src.agent.policy import Authority
from src.infra.errors import ToolError
from src.tools.base import EMAIL_PATTERN, BaseTool, RiskLevel, email_domain

if TYPE_CHECKING:
    from src.tools.context import ToolContext

_BOLD = re.compile(r"\*\*(.+?)\*\*")
_ITALIC = re.compile(r"\*(.+?)\*")


def markdown_to_html(text: str) -> str:
    """Minimal markdown: **bold**, *italic* and line breaks. Input is escaped first."""
    out = html.escape(text)
    out = _BOLD.sub(r"<strong>\1</strong>", out)
    out = _ITALIC.sub(r"<em>\1</em>", out)
    return out.replace("\n", "<br>")


class DraftEmailInput(BaseModel):
    to: str = Field(..., pattern=EMAIL_PATTERN, max_length=256)
    subject: str = Field(..., min_length=1, max_length=256)
    body_markdown: str = Field(..., min_length=1)
    contact_id: str | None = Field(
        None, description="Lead or client id the email is addressed to."
    )


class DraftEmailTool(BaseTool):
    @property
    def name(self) -> str:
        return "draft_email"

    @property
    def description(self) -> str:
        return (
            "Draft an email preview for a lead or client. Returns the rendered "
            "message; it is not sent."
        )

    @property
    def input_model(self) -> type[BaseModel]:
        return DraftEmailInput

    @property
    def authority(self) -> Authority:
        return Authority.DRAFT_EMAIL

    @property
    def is_write(self) -> bool:
        return False

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    def describe_action(self, params: DraftEmailInput, context: ToolContext) -> ActionRequest:
        return ActionRequest(kind=self.authority, email_domain=email_domain(params.to))

    async def _contact_name(self, contact_id: str, context: ToolContext) -> str:
        lead = await context.store.get("crm_leads", contact_id)
        if lead is not None:
            return lead["name"]
        client = await context.store.get("crm_clients", contact_id)
        if client is not None:
            return f"{client['first_name']} {client['last_name']}".strip()
        raise ToolError(f"Contact {contact_id} not found", code="CONTACT_NOT_FOUND")

    async def execute(self, params: DraftEmailInput, context: ToolContext) -> dict:
        name = None
        if params.contact_id is not None:
            name = await self._contact_name(params.contact_id, context)
        return {
            "status": "draft",
            "to": params.to.lower(),
            "to_name": name,
            "subject": params.subject,
            "body_html": markdown_to_html(params.body_markdown),
        }
