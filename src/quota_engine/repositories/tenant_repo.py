"""Repository for tenant records."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.core.enums import SubscriptionStatus
from quota_engine.db.models.tenant import Tenant
from quota_engine.services.transitions import TenantUpdate


class TenantRepo:
    """Data-access helpers for :class:`Tenant`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, tenant_id: UUID) -> Tenant | None:
        result = await self.session.execute(
            select(Tenant)
            .where(Tenant.id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_subscription_id: str) -> Tenant | None:
        result = await self.session.execute(
            select(Tenant).where(
                Tenant.external_subscription_id == external_subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def create(self, name: str) -> Tenant:
        """Signup: every tenant starts on the free tier with no subscription."""

        tenant = Tenant(name=name)
        self.session.add(tenant)
        await self.session.flush()
        return tenant

    async def update(
        self,
        tenant_id: UUID,
        fields: TenantUpdate,
        expected_status: SubscriptionStatus,
    ) -> bool:
        """Apply ``fields`` only if the status is still ``expected_status``.

        Returns ``False`` when another writer changed the status first.
        """

        result = await self.session.execute(
            update(Tenant)
            .where(
                Tenant.id == tenant_id,
                Tenant.subscription_status == expected_status,
            )
            .values(**fields.values())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_grace_period_elapsed(self, now: datetime) -> list[Tenant]:
        result = await self.session.execute(
            select(Tenant).where(
                Tenant.subscription_status == SubscriptionStatus.CANCELLED,
                Tenant.subscription_ends_at.is_not(None),
                Tenant.subscription_ends_at < now,
            )
        )
        return list(result.scalars().all())

    async def list_pending_cancellations(self) -> list[Tenant]:
        result = await self.session.execute(
            select(Tenant).where(
                Tenant.subscription_status == SubscriptionStatus.ACTIVE,
                Tenant.cancel_requested_at.is_not(None),
            )
        )
        return list(result.scalars().all())

    async def list_overdue_active(self, now: datetime) -> list[Tenant]:
        """Active tenants whose paid period ended without a renewal being recorded."""

        result = await self.session.execute(
            select(Tenant).where(
                Tenant.subscription_status == SubscriptionStatus.ACTIVE,
                Tenant.external_subscription_id.is_not(None),
                Tenant.subscription_ends_at.is_not(None),
                Tenant.subscription_ends_at < now,
            )
        )
        return list(result.scalars().all())
