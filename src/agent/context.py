from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.agent.policy import Policy, PolicyStore


@dataclass(frozen=True)
class AgentContext:
    """Per-request tenant/user/session context.

    Constructed fresh for every request and never shared across tenants.
    studio_id is the isolation boundary for every read and write.
    """

    studio_id: str
    user_id: str
    session_id: str
    policy: Policy


async def build_agent_context(
    policy_store: PolicyStore,
    *,
    studio_id: str,
    user_id: str,
    session_id: str | None = None,
) -> AgentContext:
    """Load the tenant policy and build the context for one request."""
    if not studio_id:
        raise ValueError("studio_id is required")
    policy = await policy_store.load(studio_id, user_id)
    return AgentContext(
        studio_id=studio_id,
        user_id=user_id,
        session_id=session_id or f"session-{uuid.uuid4()}",
        policy=policy,
    )
