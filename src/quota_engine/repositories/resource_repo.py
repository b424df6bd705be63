"""Repository utilities for quota-governed records of one resource kind."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Select, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.core.enums import ResourceKind
from quota_engine.db.models.resources import TenantResource, model_for


class ResourceRepo:
    """Count, list and insert records of a single :class:`ResourceKind`."""

    def __init__(self, session: AsyncSession, kind: ResourceKind) -> None:
        self.session = session
        self.kind = ResourceKind(kind)
        self.model = model_for(self.kind)

    def base_query(self, tenant_id: UUID) -> Select:
        """Every row of the tenant, newest first (the listing default)."""

        return (
            select(self.model)
            .where(self.model.tenant_id == tenant_id)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
        )

    async def count_for_tenant(self, tenant_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(self.model)
            .where(self.model.tenant_id == tenant_id)
        )
        value = result.scalar_one()
        return int(value or 0)

    async def fetch(self, query: Select) -> list[TenantResource]:
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def create(
        self, tenant_id: UUID, name: str, created_at: Optional[datetime] = None
    ) -> TenantResource:
        record = self.model(tenant_id=tenant_id, name=name)
        if created_at is not None:
            record.created_at = created_at
        self.session.add(record)
        await self.session.flush()
        await self.session.refresh(record)
        return record

    async def delete(self, tenant_id: UUID, record_id: UUID) -> bool:
        result = await self.session.execute(
            delete(self.model).where(
                self.model.tenant_id == tenant_id,
                self.model.id == record_id,
            )
        )
        return result.rowcount == 1
