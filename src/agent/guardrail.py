from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from src.agent.policy import (
    ALWAYS_RESTRICTED_FIELDS,
    READ_CLASS_AUTHORITIES,
    Authority,
    Policy,
    PolicyMode,
)

if TYPE_CHECKING:
    from src.agent.context import AgentContext

logger = structlog.get_logger()


class DecisionOutcome(StrEnum):
    allow = "allow"
    deny = "deny"
    propose = "propose"


class ReasonCode(StrEnum):
    """Stable reason codes attached to every decision."""

    not_authorized = "not_authorized"
    restricted_field = "restricted_field"
    domain_not_permitted = "domain_not_permitted"
    read_access = "read_access"
    under_threshold = "under_auto_approve_threshold"
    full_write = "full_write"
    human_approved = "human_approved"
    approval_required = "approval_required"
    policy_default_deny = "policy_default_deny"


@dataclass(frozen=True)
class ActionRequest:
    """What a validated tool call intends to do, as seen by the policy engine.

    fields: names of record fields the action sets (from the validated input).
    value: monetary amount or risk score compared to the kind's threshold.
    """

    kind: Authority
    table: str | None = None
    fields: tuple[str, ...] = ()
    value: float | None = None
    email_domain: str | None = None


@dataclass(frozen=True)
class Decision:
    outcome: DecisionOutcome
    reason: ReasonCode
    detail: str = ""

    @property
    def allowed(self) -> bool:
        return self.outcome == DecisionOutcome.allow


def _restricted_hits(policy: Policy, action: ActionRequest) -> list[str]:
    restricted = policy.restricted_fields | ALWAYS_RESTRICTED_FIELDS
    return [
        f for f in action.fields
        if f in restricted or (action.table and f"{action.table}.{f}" in restricted)
    ]


def evaluate(
    policy: Policy, action: ActionRequest, *, human_approved: bool = False
) -> Decision:
    """Classify an action. First matching rule wins.

    Pure function of its arguments: no clock, no I/O, no hidden state.
    human_approved is supplied only by the proposal workflow; it turns the
    guarded_write propose step into allow and changes nothing else.
    """
    if not policy.grants(action.kind):
        return Decision(
            DecisionOutcome.deny,
            ReasonCode.not_authorized,
            f"Authority {action.kind} not granted.",
        )

    blocked = _restricted_hits(policy, action)
    if blocked:
        return Decision(
            DecisionOutcome.deny,
            ReasonCode.restricted_field,
            f"Restricted fields: {', '.join(sorted(blocked))}",
        )

    allowlist = policy.email_domain_allowlist.get(action.kind)
    if allowlist is not None and action.email_domain is not None:
        if action.email_domain.lower() not in allowlist:
            return Decision(
                DecisionOutcome.deny,
                ReasonCode.domain_not_permitted,
                f"Email domain {action.email_domain} not permitted for {action.kind}.",
            )

    if action.kind in READ_CLASS_AUTHORITIES:
        return Decision(DecisionOutcome.allow, ReasonCode.read_access)

    threshold = policy.auto_approve_thresholds.get(action.kind)
    if (
        action.value is not None
        and threshold is not None
        and action.value < threshold
        and policy.mode != PolicyMode.read_only
    ):
        return Decision(
            DecisionOutcome.allow,
            ReasonCode.under_threshold,
            f"Value {action.value} below auto-approve limit {threshold}.",
        )

    if policy.mode == PolicyMode.full_write:
        return Decision(DecisionOutcome.allow, ReasonCode.full_write)

    if policy.mode == PolicyMode.guarded_write:
        if human_approved:
            return Decision(DecisionOutcome.allow, ReasonCode.human_approved)
        return Decision(
            DecisionOutcome.propose,
            ReasonCode.approval_required,
            f"{action.kind} requires approval in guarded_write mode.",
        )

    return Decision(
        DecisionOutcome.deny,
        ReasonCode.policy_default_deny,
        f"Mode {policy.mode} does not permit {action.kind}.",
    )


def decide(
    context: AgentContext, action: ActionRequest, *, human_approved: bool = False
) -> Decision:
    """Evaluate the context's policy and log the decision."""
    decision = evaluate(context.policy, action, human_approved=human_approved)
    log = logger.info if decision.allowed else logger.warning
    log(
        "guardrail_decision",
        studio_id=context.studio_id,
        user_id=context.user_id,
        action_kind=action.kind.value,
        table=action.table,
        decision=decision.outcome.value,
        reason=decision.reason.value,
        human_approved=human_approved,
    )
    return decision
