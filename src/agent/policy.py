"""Per-tenant agent policy: mode, authorities, restricted fields, thresholds.

The policy is loaded once per request from the ``ai_policies`` table and is
read-only afterwards. Tenants without a stored policy (or whose row cannot
be read) get the configured fallback, which is read_only.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import or_, select

from src.governance.models import PolicyRecord

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from src.config.settings import PolicySettings

logger = structlog.get_logger()


class PolicyMode(StrEnum):
    read_only = "read_only"
    guarded_write = "guarded_write"
    full_write = "full_write"


class Authority(StrEnum):
    """Action kinds an actor may be granted."""

    READ_CLIENTS = "READ_CLIENTS"
    READ_LEADS = "READ_LEADS"
    READ_SESSIONS = "READ_SESSIONS"
    READ_INVOICES = "READ_INVOICES"
    DRAFT_EMAIL = "DRAFT_EMAIL"
    UPDATE_MEMORY = "UPDATE_MEMORY"
    CREATE_LEAD = "CREATE_LEAD"
    UPDATE_CLIENT = "UPDATE_CLIENT"
    SEND_INVOICE = "SEND_INVOICE"


# Kinds that never mutate tenant records. Mode does not gate them.
READ_CLASS_AUTHORITIES = frozenset({
    Authority.READ_CLIENTS,
    Authority.READ_LEADS,
    Authority.READ_SESSIONS,
    Authority.READ_INVOICES,
    Authority.DRAFT_EMAIL,
    Authority.UPDATE_MEMORY,
})

# Restricted for every tenant regardless of configuration.
ALWAYS_RESTRICTED_FIELDS = frozenset({"id", "studio_id"})


@dataclass(frozen=True)
class Policy:
    """Immutable per-tenant/user policy value.

    restricted_fields entries are bare field names ("email") or
    table-qualified ("crm_clients.email").
    auto_approve_thresholds: action kind -> value below which a write that
    would otherwise be proposed is allowed.
    email_domain_allowlist: action kind -> permitted email domains. A kind
    without an entry is not domain-gated.
    """

    mode: PolicyMode
    authorities: tuple[Authority, ...]
    restricted_fields: frozenset[str] = frozenset()
    auto_approve_thresholds: Mapping[Authority, float] = field(default_factory=dict)
    email_domain_allowlist: Mapping[Authority, frozenset[str]] = field(default_factory=dict)

    def grants(self, kind: Authority) -> bool:
        return kind in self.authorities

    @classmethod
    def from_config(
        cls,
        *,
        mode: str,
        authorities: Iterable[str],
        restricted_fields: Iterable[str] = (),
        auto_approve_thresholds: Mapping[str, Any] | None = None,
        email_domain_allowlist: Mapping[str, Iterable[str]] | None = None,
    ) -> Policy:
        """Build a Policy from loosely-typed configuration data.

        Unknown authority names are dropped with a warning so a stale
        policy row cannot grant something that no longer exists.
        """
        return cls(
            mode=PolicyMode(mode),
            authorities=tuple(_parse_authorities(authorities)),
            restricted_fields=frozenset(restricted_fields),
            auto_approve_thresholds={
                Authority(k): float(v)
                for k, v in (auto_approve_thresholds or {}).items()
                if k in Authority.__members__
            },
            email_domain_allowlist={
                Authority(k): frozenset(d.lower() for d in domains)
                for k, domains in (email_domain_allowlist or {}).items()
                if k in Authority.__members__
            },
        )


def _parse_authorities(names: Iterable[str]) -> list[Authority]:
    parsed: list[Authority] = []
    for name in names:
        try:
            authority = Authority(name)
        except ValueError:
            logger.warning("policy_unknown_authority", authority=name)
            continue
        if authority not in parsed:
            parsed.append(authority)
    return parsed


def default_policy(settings: PolicySettings) -> Policy:
    return Policy.from_config(
        mode=settings.default_mode,
        authorities=settings.default_authorities,
    )


class PolicyStore:
    """Loads tenant policies. A user-specific row wins over the studio-wide row."""

    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        settings: PolicySettings,
    ) -> None:
        self._db = db_session_factory
        self._settings = settings

    async def load(self, studio_id: str, user_id: str | None = None) -> Policy:
        """Load the effective policy. Never raises: falls back to the default."""
        try:
            async with self._db() as db:
                result = await db.execute(
                    select(PolicyRecord)
                    .where(
                        PolicyRecord.studio_id == studio_id,
                        or_(
                            PolicyRecord.user_id.is_(None),
                            PolicyRecord.user_id == user_id,
                        ),
                    )
                    .order_by(PolicyRecord.user_id.is_(None))
                    .limit(1)
                )
                row = result.scalars().first()
        except Exception:
            logger.exception(
                "policy_fallback",
                studio_id=studio_id,
                reason="db_error",
            )
            return default_policy(self._settings)

        if row is None:
            logger.info("policy_fallback", studio_id=studio_id, reason="no_policy_row")
            return default_policy(self._settings)

        try:
            return Policy.from_config(
                mode=row.mode,
                authorities=row.authorities or [],
                restricted_fields=row.restricted_fields or [],
                auto_approve_thresholds=row.auto_approve_thresholds or {},
                email_domain_allowlist=row.email_domain_allowlist or {},
            )
        except (ValueError, TypeError):
            logger.exception(
                "policy_fallback",
                studio_id=studio_id,
                reason="invalid_policy_row",
                mode=row.mode,
            )
            return default_policy(self._settings)
