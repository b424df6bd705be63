"""Pydantic schemas for subscription state, history and lifecycle results."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from quota_engine.core.enums import EventSource, PlanTier, SubscriptionStatus


class LifecycleEventRead(BaseModel):
    tenant_id: UUID
    previous_status: SubscriptionStatus
    new_status: SubscriptionStatus
    effective_at: datetime
    source: EventSource

    model_config = ConfigDict(from_attributes=True)


class SubscriptionRead(BaseModel):
    """A tenant's subscription fields plus its most recent transition."""

    tenant_id: UUID
    plan_tier: PlanTier
    subscription_status: SubscriptionStatus
    subscription_started_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None
    has_external_subscription: bool = False
    cancellation_pending: bool = Field(
        default=False,
        description="A cancellation is waiting for the provider to confirm it",
    )
    latest_event: Optional[LifecycleEventRead] = None


class SubscriptionHistoryRead(BaseModel):
    tenant_id: UUID
    events: List[LifecycleEventRead]


class CancelResult(BaseModel):
    """Outcome of a successful (or already applied) cancellation."""

    tenant_id: UUID
    subscription_status: SubscriptionStatus
    plan_tier: PlanTier
    subscription_ends_at: Optional[datetime] = None
    already_cancelled: bool = False


class ReconciliationReport(BaseModel):
    """Counters for one reconciliation pass."""

    expired: int = 0
    cancellations_completed: int = 0
    cancellations_rejected: int = 0
    renewed: int = 0
    cancelled_by_provider: int = 0
    skipped_conflicts: int = 0
    gateway_failures: int = 0

    @property
    def changed(self) -> int:
        return (
            self.expired
            + self.cancellations_completed
            + self.renewed
            + self.cancelled_by_provider
        )
