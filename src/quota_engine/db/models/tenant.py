"""Tenant model definition."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from quota_engine.core.enums import PlanTier, SubscriptionStatus
from quota_engine.db.base import Base


def enum_column(enum_cls) -> Enum:
    """Store enum values (not names) in a portable VARCHAR column."""

    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class Tenant(Base):
    """Represents one customer organization and its subscription state."""

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    plan_tier: Mapped[PlanTier] = mapped_column(
        enum_column(PlanTier), nullable=False, default=PlanTier.FREE
    )
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        enum_column(SubscriptionStatus),
        nullable=False,
        default=SubscriptionStatus.NONE,
        index=True,
    )
    subscription_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_ends_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    external_subscription_id: Mapped[Optional[str]] = mapped_column(
        String, unique=True, nullable=True
    )
    # Set only when a user cancellation could not reach the provider
    cancel_requested_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<Tenant {self.id} plan={self.plan_tier} "
            f"status={self.subscription_status}>"
        )
