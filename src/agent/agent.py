from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel

from src.agent.guardrail import Decision, DecisionOutcome, decide
from src.agent.outcomes import OutcomeStatus, ToolCallOutcome, TurnResult
from src.config.settings import AgentSettings
from src.crm.store import TenantStore
from src.governance.audit import AuditEntry, AuditOutcome
from src.infra.errors import (
    AuditWriteFailure,
    LLMError,
    ToolError,
    UnknownToolError,
    ValidationError,
)
from src.infra.logging import bind_turn_context, clear_turn_context
from src.tools.context import ToolContext

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.agent.context import AgentContext
    from src.agent.model_client import ModelClient
    from src.governance.audit import AuditLog
    from src.governance.proposals import ProposalWorkflow
    from src.session.memory import WorkingMemoryStore
    from src.tools.base import BaseTool
    from src.tools.registry import ToolRegistry

logger = structlog.get_logger()


def _safe_parse_args(raw: str | dict | None) -> tuple[dict, str | None]:
    """Parse JSON tool call arguments. Returns (dict, error_message | None)."""
    if isinstance(raw, dict):
        return raw, None
    if raw is None or raw == "":
        return {}, None
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        return {}, f"JSON parse error: {e}"
    if not isinstance(parsed, dict):
        return {}, f"Expected dict, got {type(parsed).__name__}"
    return parsed, None


@dataclass(frozen=True)
class ToolCallRequest:
    """One tool invocation requested by the model."""

    call_id: str
    name: str
    arguments: str | dict[str, Any] | None = None

    @classmethod
    def from_openai(cls, tool_call: Any) -> ToolCallRequest:
        """Build from an OpenAI SDK tool call object or its dict form."""
        if isinstance(tool_call, dict):
            fn = tool_call.get("function") or {}
            return cls(
                call_id=tool_call.get("id", ""),
                name=fn.get("name", ""),
                arguments=fn.get("arguments"),
            )
        return cls(
            call_id=tool_call.id,
            name=tool_call.function.name,
            arguments=tool_call.function.arguments,
        )

    def to_openai(self) -> dict[str, Any]:
        arguments = self.arguments
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments or {}, ensure_ascii=False)
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.name, "arguments": arguments},
        }


@dataclass(frozen=True)
class _PreparedCall:
    request: ToolCallRequest
    tool: BaseTool
    params: BaseModel
    key: str | None


class AgentLoop:
    """Per-turn mediation between model tool calls and tenant data.

    Flow per requested call: resolve → validate → describe action → decide →
    (deny | propose | execute) → audit. Each call runs in its own transaction
    shared with its audit entry. Outcomes are returned as data; one call's
    failure never aborts its siblings.

    Calls with the same serialization key run one after another in request
    order; calls without a key run concurrently up to max_parallel_tool_calls.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        db_session_factory: async_sessionmaker[AsyncSession],
        audit_log: AuditLog,
        proposals: ProposalWorkflow,
        memory_store: WorkingMemoryStore,
        *,
        model_client: ModelClient | None = None,
        model: str = "gpt-4o-mini",
        settings: AgentSettings | None = None,
    ) -> None:
        self._registry = registry
        self._db_factory = db_session_factory
        self._audit = audit_log
        self._proposals = proposals
        self._memory = memory_store
        self._model_client = model_client
        self._model = model
        self._settings = settings or AgentSettings()

    async def handle_message(
        self, context: AgentContext, messages: Sequence[dict[str, Any]]
    ) -> TurnResult:
        """Run the model/tool exchange until the model answers with text.

        messages is the caller-built prompt in OpenAI chat format. Tool calls
        go through run_turn; their outcomes are fed back as tool messages.
        """
        if self._model_client is None:
            raise LLMError("No model client configured")

        history: list[dict[str, Any]] = list(messages)
        tools_schema = self._registry.get_tools_schema(context.policy.authorities)
        outcomes: list[ToolCallOutcome] = []
        max_iterations = self._settings.max_tool_iterations

        for iteration in range(max_iterations):
            message = await self._model_client.chat_completion(
                history, self._model, tools=tools_schema or None
            )
            if not message.tool_calls:
                return TurnResult(
                    content=message.content or "",
                    outcomes=outcomes,
                    iterations=iteration + 1,
                )

            calls = [ToolCallRequest.from_openai(tc) for tc in message.tool_calls]
            history.append(
                {
                    "role": "assistant",
                    "content": message.content or "",
                    "tool_calls": [c.to_openai() for c in calls],
                }
            )
            turn_outcomes = await self.run_turn(context, calls)
            outcomes.extend(turn_outcomes)
            history.extend(o.to_tool_message() for o in turn_outcomes)

        logger.warning(
            "max_tool_iterations",
            max=max_iterations,
            studio_id=context.studio_id,
            session_id=context.session_id,
        )
        return TurnResult(content="", outcomes=outcomes, iterations=max_iterations)

    async def run_turn(
        self,
        context: AgentContext,
        tool_calls: Sequence[ToolCallRequest | dict[str, Any]],
    ) -> list[ToolCallOutcome]:
        """Process every requested call of one turn; outcomes keep request order."""
        bind_turn_context(
            studio_id=context.studio_id,
            user_id=context.user_id,
            session_id=context.session_id,
        )
        try:
            requests = [
                tc if isinstance(tc, ToolCallRequest) else ToolCallRequest.from_openai(tc)
                for tc in tool_calls
            ]
            prepared = [self._prepare(context, r) for r in requests]

            locks: dict[str, asyncio.Lock] = {}
            semaphore = asyncio.Semaphore(self._settings.max_parallel_tool_calls)

            async def _run(item: _PreparedCall | ToolCallOutcome) -> ToolCallOutcome:
                if isinstance(item, ToolCallOutcome):
                    return item
                if item.key is None:
                    async with semaphore:
                        return await asyncio.shield(self._execute_call(context, item))
                lock = locks.setdefault(item.key, asyncio.Lock())
                async with lock, semaphore:
                    return await asyncio.shield(self._execute_call(context, item))

            # Tasks are created in request order, so same-key waiters queue FIFO.
            results = await asyncio.gather(
                *(_run(item) for item in prepared), return_exceptions=True
            )
            outcomes: list[ToolCallOutcome] = []
            for request, result in zip(requests, results, strict=True):
                if isinstance(result, BaseException):
                    if isinstance(result, asyncio.CancelledError):
                        raise result
                    logger.error(
                        "tool_call_crashed",
                        tool_name=request.name,
                        call_id=request.call_id,
                        error=str(result),
                    )
                    result = ToolCallOutcome(
                        call_id=request.call_id,
                        tool_name=request.name,
                        status=OutcomeStatus.execution_failed,
                        reason_code="EXECUTION_ERROR",
                        message=f"Tool {request.name} failed",
                    )
                outcomes.append(result)
            logger.info(
                "turn_completed",
                calls=len(outcomes),
                statuses=[o.status.value for o in outcomes],
            )
            return outcomes
        finally:
            clear_turn_context()

    # ── per-call steps ──

    def _prepare(
        self, context: AgentContext, request: ToolCallRequest
    ) -> _PreparedCall | ToolCallOutcome:
        """Resolve and validate. Failures here are returned, not audited."""
        try:
            tool = self._registry.resolve(request.name)
        except UnknownToolError as e:
            logger.warning("unknown_tool", tool_name=request.name, call_id=request.call_id)
            return ToolCallOutcome(
                call_id=request.call_id,
                tool_name=request.name,
                status=OutcomeStatus.unknown_tool,
                reason_code=e.code,
                message=f"Capability not available: {request.name}",
            )

        arguments, parse_error = _safe_parse_args(request.arguments)
        if parse_error is not None:
            logger.warning("tool_arguments_unparseable", tool_name=tool.name, error=parse_error)
            return ToolCallOutcome(
                call_id=request.call_id,
                tool_name=tool.name,
                status=OutcomeStatus.invalid_arguments,
                reason_code="INVALID_ARGUMENTS",
                message=parse_error,
                violations=[
                    {"field": "<root>", "constraint": "json", "message": parse_error}
                ],
            )

        try:
            params = tool.validate(arguments)
        except ValidationError as e:
            logger.info("tool_arguments_invalid", tool_name=tool.name, violations=e.violations)
            return ToolCallOutcome(
                call_id=request.call_id,
                tool_name=tool.name,
                status=OutcomeStatus.invalid_arguments,
                reason_code=e.code,
                message=str(e),
                violations=e.violations,
            )

        return _PreparedCall(
            request=request,
            tool=tool,
            params=params,
            key=tool.serialization_key(params, context),
        )

    async def _execute_call(
        self, context: AgentContext, call: _PreparedCall
    ) -> ToolCallOutcome:
        tool, params, request = call.tool, call.params, call.request

        async with self._db_factory() as db:
            tool_ctx = ToolContext(
                agent=context,
                store=TenantStore(db, context.studio_id),
                memory=self._memory,
                db=db,
            )
            action = tool.describe_action(params, tool_ctx)
            decision = decide(context, action)
            entry = AuditEntry(
                studio_id=context.studio_id,
                user_id=context.user_id,
                session_id=context.session_id,
                tool_name=tool.name,
                action_kind=action.kind.value,
                decision=decision.outcome.value,
                reason=decision.reason.value,
                outcome=AuditOutcome.denied,
            )

            try:
                if decision.outcome == DecisionOutcome.deny:
                    return await self._deny(db, request, tool, decision, entry)
                if decision.outcome == DecisionOutcome.propose:
                    return await self._propose(
                        db, context, request, tool, params, action, decision, entry
                    )
                return await self._allow(db, request, tool, params, tool_ctx, entry)
            except AuditWriteFailure as e:
                await db.rollback()
                return ToolCallOutcome(
                    call_id=request.call_id,
                    tool_name=tool.name,
                    status=OutcomeStatus.audit_failed,
                    reason_code=e.code,
                    message="Action not committed: audit entry could not be recorded",
                )

    async def _deny(
        self,
        db: AsyncSession,
        request: ToolCallRequest,
        tool: BaseTool,
        decision: Decision,
        entry: AuditEntry,
    ) -> ToolCallOutcome:
        await self._audit.record(entry, db=db)
        await db.commit()
        logger.info("tool_denied", tool_name=tool.name, reason=decision.reason.value)
        return ToolCallOutcome(
            call_id=request.call_id,
            tool_name=tool.name,
            status=OutcomeStatus.denied,
            reason_code=decision.reason.value,
            message=decision.detail or f"{tool.name} is not permitted by policy",
        )

    async def _propose(
        self,
        db: AsyncSession,
        context: AgentContext,
        request: ToolCallRequest,
        tool: BaseTool,
        params: BaseModel,
        action,
        decision: Decision,
        entry: AuditEntry,
    ) -> ToolCallOutcome:
        proposal = await self._proposals.create(
            db,
            context,
            tool,
            params.model_dump(mode="json", exclude_unset=True),
            action,
            decision,
        )
        await self._audit.record(
            replace(entry, outcome=AuditOutcome.proposed, proposal_id=proposal.id), db=db
        )
        await db.commit()
        return ToolCallOutcome(
            call_id=request.call_id,
            tool_name=tool.name,
            status=OutcomeStatus.proposed,
            reason_code=decision.reason.value,
            message="Queued for human approval",
            proposal_id=proposal.id,
        )

    async def _allow(
        self,
        db: AsyncSession,
        request: ToolCallRequest,
        tool: BaseTool,
        params: BaseModel,
        tool_ctx: ToolContext,
        entry: AuditEntry,
    ) -> ToolCallOutcome:
        entry = replace(entry, outcome=AuditOutcome.executed)
        before: dict | None = None
        try:
            if tool.is_write:
                before = await tool.snapshot(params, tool_ctx)
            result = await tool.execute(params, tool_ctx)
            await self._audit.record(
                replace(
                    entry,
                    before_state=before,
                    after_state=result if tool.is_write else None,
                ),
                db=db,
            )
            await db.commit()
        except AuditWriteFailure:
            raise
        except Exception as e:
            await db.rollback()
            code = e.code if isinstance(e, ToolError) else "EXECUTION_ERROR"
            logger.exception("tool_execution_failed", tool_name=tool.name, code=code)
            # Own transaction: the failed attempt is recorded even though its writes are not.
            await self._audit.record(
                replace(
                    entry,
                    outcome=AuditOutcome.failed,
                    before_state=before,
                    error=str(e),
                )
            )
            message = str(e) if isinstance(e, ToolError) else f"Tool {tool.name} failed"
            return ToolCallOutcome(
                call_id=request.call_id,
                tool_name=tool.name,
                status=OutcomeStatus.execution_failed,
                reason_code=code,
                message=message,
            )

        logger.info("tool_executed", tool_name=tool.name, is_write=tool.is_write)
        return ToolCallOutcome(
            call_id=request.call_id,
            tool_name=tool.name,
            status=OutcomeStatus.ok,
            reason_code=entry.reason,
            data=result,
        )
