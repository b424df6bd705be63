"""Admission controller: the advisory pre-write quota check.

Concurrency note for maintainers
--------------------------------
The check and the caller's subsequent INSERT are not in one transaction and
no per-tenant lock is taken. Two concurrent requests can both see
``allowed=True`` and both insert, leaving the tenant one row over quota.
That overage is harmless: :class:`~quota_engine.services.visibility.VisibilityLimiter`
only ever returns the oldest N rows, so the extra row stays invisible until
an older row is removed or the tenant upgrades. Do not add locking here; it
would serialize every write of a tenant without making the read path any
safer.

Being over quota is a normal decision (``allowed=False``), never an exception.
"""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.core.enums import ResourceKind
from quota_engine.repositories.resource_repo import ResourceRepo
from quota_engine.schemas.quota import QuotaDecision
from quota_engine.services.quotas import QuotaResolver


logger = logging.getLogger(__name__)


class AdmissionController:
    """Decide whether a tenant may create one more record of a kind."""

    def __init__(self, session: AsyncSession, resolver: QuotaResolver) -> None:
        self.session = session
        self.resolver = resolver

    async def can_create(self, tenant_id: UUID, kind: ResourceKind) -> QuotaDecision:
        kind = ResourceKind(kind)
        repo = ResourceRepo(self.session, kind)
        quota = await self.resolver.quota_for(tenant_id, kind)
        # True total, not the limiter's bounded view
        current_count = await repo.count_for_tenant(tenant_id)

        decision = QuotaDecision(
            resource_kind=kind,
            current_count=current_count,
            limit=quota.limit,
            allowed=quota.admits(current_count),
        )
        if not decision.allowed:
            logger.info(
                f"Admission denied for tenant {tenant_id}: "
                f"{kind.value} {current_count}/{quota.limit}"
            )
        return decision
