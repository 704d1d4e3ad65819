from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class OutcomeStatus(StrEnum):
    ok = "ok"
    denied = "denied"
    proposed = "proposed"
    unknown_tool = "unknown_tool"
    invalid_arguments = "invalid_arguments"
    execution_failed = "execution_failed"
    audit_failed = "audit_failed"


@dataclass
class ToolCallOutcome:
    """Structured result of one requested tool call, returned to the model.

    reason_code is stable and machine-branchable; message is free text.
    A proposal is a deferred success, not an error.
    """

    call_id: str
    tool_name: str
    status: OutcomeStatus
    reason_code: str
    message: str = ""
    data: dict[str, Any] | None = None
    proposal_id: str | None = None
    violations: list[dict[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.ok, OutcomeStatus.proposed)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": self.ok,
            "status": self.status.value,
            "reason_code": self.reason_code,
            "tool": self.tool_name,
        }
        if self.message:
            payload["message"] = self.message
        if self.data is not None:
            payload["data"] = self.data
        if self.proposal_id is not None:
            payload["proposal_id"] = self.proposal_id
            payload["proposal_status"] = "pending"
        if self.violations:
            payload["violations"] = self.violations
        return payload

    def to_tool_message(self) -> dict[str, Any]:
        """OpenAI chat format tool message."""
        return {
            "role": "tool",
            "tool_call_id": self.call_id,
            "content": json.dumps(self.to_payload(), ensure_ascii=False, default=str),
        }


@dataclass
class TurnResult:
    """Final text of a conversation turn plus every tool outcome it produced."""

    content: str
    outcomes: list[ToolCallOutcome] = field(default_factory=list)
    iterations: int = 0
