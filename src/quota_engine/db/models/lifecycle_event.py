"""Append-only record of subscription status transitions."""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from quota_engine.core.enums import EventSource, SubscriptionStatus
from quota_engine.db.base import Base
from quota_engine.db.models.tenant import enum_column


class LifecycleEvent(Base):
    """One subscription state transition. Rows are inserted, never updated."""

    __tablename__ = "lifecycle_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    previous_status: Mapped[SubscriptionStatus] = mapped_column(
        enum_column(SubscriptionStatus), nullable=False
    )
    new_status: Mapped[SubscriptionStatus] = mapped_column(
        enum_column(SubscriptionStatus), nullable=False
    )
    effective_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[EventSource] = mapped_column(enum_column(EventSource), nullable=False)

    __table_args__ = (
        Index("ix_lifecycle_events_tenant_effective", "tenant_id", "effective_at"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<LifecycleEvent tenant={self.tenant_id} "
            f"{self.previous_status}->{self.new_status} source={self.source}>"
        )
