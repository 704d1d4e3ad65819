from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.agent.guardrail import ActionRequest
from src.infra.errors import ValidationError

if TYPE_CHECKING:
    from src.agent.context import AgentContext
    from src.agent.policy import Authority
    from src.tools.context import ToolContext


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def email_domain(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    return email.rsplit("@", 1)[1].lower()


class RiskLevel(StrEnum):
    """Risk classification stored on proposals for reviewers.

    Undeclared tools default to 'high' (fail-closed).
    """

    low = "low"
    medium = "medium"
    high = "high"


def format_violations(exc: PydanticValidationError) -> list[dict[str, str]]:
    """Flatten pydantic errors into {field, constraint, message} dicts."""
    return [
        {
            "field": ".".join(str(p) for p in err["loc"]) or "<root>",
            "constraint": err["type"],
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


class BaseTool(ABC):
    """Abstract base class for agent tools.

    A tool declares a pydantic input model (its parameter contract), the
    action kind it requests from the guardrail, and an async handler that
    receives the validated input.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name used in function calling."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what the tool does."""
        ...

    @property
    @abstractmethod
    def input_model(self) -> type[BaseModel]:
        """Pydantic model validating the tool's arguments."""
        ...

    @property
    @abstractmethod
    def authority(self) -> Authority:
        """Action kind requested from the policy engine."""
        ...

    @property
    def is_write(self) -> bool:
        """Whether the tool mutates state. Fail-closed default: True.

        Writes get before/after snapshots in the audit log and are serialized
        per tenant unless serialization_key is narrowed.
        """
        return True

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.high

    @property
    def parameters(self) -> dict:
        """JSON Schema describing the tool's input parameters."""
        return self.input_model.model_json_schema()

    def validate(self, arguments: dict[str, Any]) -> BaseModel:
        """Validate raw arguments. Raises ValidationError with violated constraints."""
        try:
            return self.input_model.model_validate(arguments)
        except PydanticValidationError as e:
            violations = format_violations(e)
            raise ValidationError(
                f"Invalid arguments for {self.name}: "
                + "; ".join(f"{v['field']}: {v['message']}" for v in violations),
                violations=violations,
            ) from e

    def describe_action(self, params: Any, context: ToolContext) -> ActionRequest:
        """Describe the validated call for the guardrail. Override to expose fields/value."""
        return ActionRequest(kind=self.authority)

    def serialization_key(self, params: Any, context: AgentContext) -> str | None:
        """Key under which calls in one turn must not overlap. None = no ordering."""
        if not self.is_write:
            return None
        return f"tenant:{context.studio_id}"

    async def snapshot(self, params: Any, context: ToolContext) -> dict | None:
        """Before-state of the record the call will modify, if any."""
        return None

    @abstractmethod
    async def execute(self, params: Any, context: ToolContext) -> dict:
        """Execute the tool with validated input. Raise ToolError for domain failures."""
        ...
