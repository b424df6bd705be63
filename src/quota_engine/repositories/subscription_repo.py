"""Repository utilities for the subscription history table."""
from __future__ import annotations

import datetime as dt
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.core.enums import PlanTier, SubscriptionStatus
from quota_engine.db.models.subscription import Subscription


class SubscriptionRepo:
    """Data-access helpers for :class:`Subscription`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _latest_query(self, tenant_id: UUID):
        return (
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .order_by(Subscription.started_at.desc(), Subscription.created_at.desc())
            .execution_options(populate_existing=True)
            .limit(1)
        )

    async def create(
        self,
        tenant_id: UUID,
        external_subscription_id: str | None,
        started_at: dt.datetime,
        expires_at: dt.datetime | None,
        amount: Decimal | None,
        currency: str,
    ) -> Subscription:
        subscription = Subscription(
            tenant_id=tenant_id,
            plan=PlanTier.PRO,
            status=SubscriptionStatus.ACTIVE,
            external_subscription_id=external_subscription_id,
            amount=amount,
            currency=currency,
            started_at=started_at,
            expires_at=expires_at,
        )
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def latest_for_tenant(self, tenant_id: UUID) -> Subscription | None:
        result = await self.session.execute(self._latest_query(tenant_id))
        return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: UUID) -> list[Subscription]:
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .order_by(Subscription.started_at.desc(), Subscription.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def mark_latest(
        self,
        tenant_id: UUID,
        status: SubscriptionStatus,
        *,
        cancelled_at: dt.datetime | None = None,
        expires_at: dt.datetime | None = None,
    ) -> bool:
        """Update the single most recent history row of the tenant.

        Older rows are left untouched even if several match the tenant.
        """

        latest_id = (
            select(Subscription.id)
            .where(Subscription.tenant_id == tenant_id)
            .order_by(Subscription.started_at.desc(), Subscription.created_at.desc())
            .limit(1)
            .scalar_subquery()
        )
        values: dict = {"status": status}
        if cancelled_at is not None:
            values["cancelled_at"] = cancelled_at
        if expires_at is not None:
            values["expires_at"] = expires_at

        result = await self.session.execute(
            update(Subscription)
            .where(Subscription.id == latest_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
