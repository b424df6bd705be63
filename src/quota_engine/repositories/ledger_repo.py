"""Lifecycle event ledger: an append-only log of subscription transitions."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.db.models.lifecycle_event import LifecycleEvent


class LifecycleLedger:
    """Insert and query :class:`LifecycleEvent` rows. Rows are never updated."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, event: LifecycleEvent) -> LifecycleEvent:
        self.session.add(event)
        await self.session.flush()
        return event

    async def latest(self, tenant_id: UUID) -> LifecycleEvent | None:
        result = await self.session.execute(
            select(LifecycleEvent)
            .where(LifecycleEvent.tenant_id == tenant_id)
            .order_by(LifecycleEvent.effective_at.desc(), LifecycleEvent.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, tenant_id: UUID) -> list[LifecycleEvent]:
        """All events of the tenant, oldest first."""

        result = await self.session.execute(
            select(LifecycleEvent)
            .where(LifecycleEvent.tenant_id == tenant_id)
            .order_by(LifecycleEvent.effective_at.asc(), LifecycleEvent.id.asc())
        )
        return list(result.scalars().all())
