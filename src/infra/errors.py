"""Custom exception hierarchy for the studio agent.

All application-specific exceptions inherit from StudioAgentError,
which carries a stable reason code that callers (and the model) can
branch on without string matching.
"""

from __future__ import annotations


class StudioAgentError(Exception):
    """Base exception for all studio agent errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class AgentError(StudioAgentError):
    """Errors in the agent runtime."""

    def __init__(self, message: str, *, code: str = "AGENT_ERROR") -> None:
        super().__init__(message, code=code)


class LLMError(AgentError):
    """Errors from LLM API calls (timeouts, rate limits, failures)."""

    def __init__(self, message: str, *, code: str = "LLM_ERROR") -> None:
        super().__init__(message, code=code)


class ToolError(AgentError):
    """Expected domain failure raised by a tool handler (e.g. record not found)."""

    def __init__(self, message: str, *, code: str = "TOOL_ERROR") -> None:
        super().__init__(message, code=code)


class DuplicateToolError(AgentError):
    """A tool with the same name is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool already registered: {name}", code="DUPLICATE_TOOL")
        self.tool_name = name


class UnknownToolError(AgentError):
    """Requested tool name is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Capability not available: {name}", code="UNKNOWN_TOOL")
        self.tool_name = name


class ValidationError(AgentError):
    """Tool input failed the tool's parameter contract."""

    def __init__(self, message: str, *, violations: list[dict] | None = None) -> None:
        super().__init__(message, code="INVALID_ARGUMENTS")
        self.violations = violations or []


class PolicyDenied(AgentError):
    """Guardrail decision was deny. reason is the decision's reason code."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message, code="POLICY_DENIED")
        self.reason = reason


class HandlerExecutionError(AgentError):
    """The tool's underlying action failed."""

    def __init__(self, message: str, *, code: str = "EXECUTION_ERROR") -> None:
        super().__init__(message, code=code)


class AuditWriteFailure(StudioAgentError):
    """Audit entry could not be durably recorded; the action is not committed."""

    def __init__(self, message: str = "Audit entry could not be recorded") -> None:
        super().__init__(message, code="AUDIT_WRITE_FAILED")


class GovernanceError(StudioAgentError):
    """Errors in the proposal workflow."""

    def __init__(self, message: str, *, code: str = "GOVERNANCE_ERROR") -> None:
        super().__init__(message, code=code)


class InvalidTransitionError(GovernanceError):
    """Proposal state change requested from a non-pending state."""

    def __init__(self, proposal_id: str, current_status: str, requested: str) -> None:
        super().__init__(
            f"Cannot move proposal {proposal_id} from '{current_status}' to '{requested}'",
            code="INVALID_TRANSITION",
        )
        self.current_status = current_status
        self.requested = requested


class ProposalNotFoundError(GovernanceError):
    """No proposal with this id exists for the tenant."""

    def __init__(self, proposal_id: str) -> None:
        super().__init__(f"Proposal not found: {proposal_id}", code="PROPOSAL_NOT_FOUND")


class SessionNotFoundError(StudioAgentError):
    """No working memory has ever been written for this session."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"No working memory for session: {session_id}", code="SESSION_NOT_FOUND"
        )
