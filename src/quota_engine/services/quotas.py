"""Quota resolution for a tenant.

The resolver trusts the tenant's stored ``plan_tier``; grace periods are the
lifecycle manager's concern. Instances cache per tenant and are meant to live
for a single request.
"""
from __future__ import annotations

import logging
from typing import Dict
from uuid import UUID

from quota_engine.core.enums import PlanTier, ResourceKind
from quota_engine.core.exceptions import TenantNotFound
from quota_engine.repositories.tenant_repo import TenantRepo
from quota_engine.services.plans import DEFAULT_PLAN_REGISTRY, PlanRegistry, Quota


logger = logging.getLogger(__name__)


class QuotaResolver:
    """Return the effective quota set of a tenant."""

    def __init__(
        self,
        tenant_repo: TenantRepo,
        registry: PlanRegistry = DEFAULT_PLAN_REGISTRY,
    ) -> None:
        self.tenant_repo = tenant_repo
        self.registry = registry
        self._tiers: Dict[UUID, PlanTier] = {}

    async def tier_for(self, tenant_id: UUID) -> PlanTier:
        tier = self._tiers.get(tenant_id)
        if tier is None:
            tenant = await self.tenant_repo.get(tenant_id)
            if tenant is None:
                raise TenantNotFound(tenant_id)
            tier = PlanTier(tenant.plan_tier)
            self._tiers[tenant_id] = tier
            logger.debug(f"Resolved tier {tier.value} for tenant {tenant_id}")
        return tier

    async def resolve(self, tenant_id: UUID) -> Dict[ResourceKind, Quota]:
        tier = await self.tier_for(tenant_id)
        return dict(self.registry.definition(tier).quotas)

    async def quota_for(self, tenant_id: UUID, kind: ResourceKind) -> Quota:
        tier = await self.tier_for(tenant_id)
        return self.registry.quota_for(tier, kind)

    def forget(self, tenant_id: UUID) -> None:
        """Drop the cached tier, e.g. after a transition inside the same request."""

        self._tiers.pop(tenant_id, None)
