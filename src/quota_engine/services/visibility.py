"""Visibility limiter: the hard enforcement point for quotas.

Under a finite quota N a listing only ever contains the tenant's N oldest
records (by ``created_at``, then ``id``). Rows above the cap are hidden, not
deleted, so a tenant that upgrades again sees them immediately. Because the
visible set is chosen by creation order it is stable across calls and across
concurrent writers, and it holds even when two admission checks raced and
both inserted.
"""
from __future__ import annotations

from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.core.enums import ResourceKind
from quota_engine.db.models.resources import TenantResource, model_for
from quota_engine.repositories.resource_repo import ResourceRepo
from quota_engine.services.quotas import QuotaResolver


class VisibilityLimiter:
    """Bound "list records of kind K for tenant T" queries by the tenant's quota."""

    def __init__(self, session: AsyncSession, resolver: QuotaResolver) -> None:
        self.session = session
        self.resolver = resolver

    async def limit(
        self, tenant_id: UUID, kind: ResourceKind, base_query: Select
    ) -> Select:
        """Return ``base_query`` restricted to the rows the tenant may see.

        The caller's own filters and ordering are preserved; only membership
        is restricted. With an unlimited quota the query is returned as is.
        """

        quota = await self.resolver.quota_for(tenant_id, kind)
        if quota.unlimited:
            return base_query

        model = model_for(kind)
        visible_ids = (
            select(model.id)
            .where(model.tenant_id == tenant_id)
            .order_by(model.created_at.asc(), model.id.asc())
            .limit(quota.limit)
        )
        return base_query.where(model.id.in_(visible_ids))

    async def list_visible(
        self, tenant_id: UUID, kind: ResourceKind
    ) -> list[TenantResource]:
        """Run the tenant's default listing through the limiter."""

        repo = ResourceRepo(self.session, kind)
        query = await self.limit(tenant_id, repo.kind, repo.base_query(tenant_id))
        return await repo.fetch(query)
