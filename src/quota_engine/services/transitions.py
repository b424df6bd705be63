"""Subscription state machine and the typed field sets each transition may write.

Every write to a tenant's subscription columns goes through one of the
update structs below, so a transition can only touch the fields it owns.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, FrozenSet, Mapping, Optional

from quota_engine.core.enums import PlanTier, SubscriptionStatus


ALLOWED_TRANSITIONS: Mapping[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    SubscriptionStatus.NONE: frozenset({SubscriptionStatus.ACTIVE}),
    SubscriptionStatus.ACTIVE: frozenset(
        {SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED}
    ),
    SubscriptionStatus.CANCELLED: frozenset({SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.EXPIRED: frozenset({SubscriptionStatus.ACTIVE}),
}


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[SubscriptionStatus(current)]


class TenantUpdate:
    """Base for the field sets written by a conditional tenant update."""

    target_status: ClassVar[Optional[SubscriptionStatus]] = None

    def values(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class ActivateUpdate(TenantUpdate):
    """A checkout succeeded: grant the paid tier for the new period."""

    external_subscription_id: Optional[str]
    started_at: datetime
    ends_at: datetime

    target_status: ClassVar[SubscriptionStatus] = SubscriptionStatus.ACTIVE

    def values(self) -> Dict[str, Any]:
        return {
            "subscription_status": SubscriptionStatus.ACTIVE,
            "plan_tier": PlanTier.PRO,
            "subscription_started_at": self.started_at,
            "subscription_ends_at": self.ends_at,
            "external_subscription_id": self.external_subscription_id,
            "cancel_requested_at": None,
        }


@dataclass(frozen=True)
class CancelUpdate(TenantUpdate):
    """Stop renewal but keep the paid tier until the grace period ends.

    ``ends_at`` of ``None`` leaves the stored ``subscription_ends_at`` as is.
    """

    ends_at: Optional[datetime] = None

    target_status: ClassVar[SubscriptionStatus] = SubscriptionStatus.CANCELLED

    def values(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {
            "subscription_status": SubscriptionStatus.CANCELLED,
            "cancel_requested_at": None,
        }
        if self.ends_at is not None:
            values["subscription_ends_at"] = self.ends_at
        return values


@dataclass(frozen=True)
class ExpireUpdate(TenantUpdate):
    """The only update that moves a tenant back to the free tier."""

    target_status: ClassVar[SubscriptionStatus] = SubscriptionStatus.EXPIRED

    def values(self) -> Dict[str, Any]:
        return {
            "subscription_status": SubscriptionStatus.EXPIRED,
            "plan_tier": PlanTier.FREE,
            "cancel_requested_at": None,
        }


@dataclass(frozen=True)
class RenewUpdate(TenantUpdate):
    """A payment went through: push the end of the paid period forward."""

    ends_at: datetime

    def values(self) -> Dict[str, Any]:
        return {"subscription_ends_at": self.ends_at}


@dataclass(frozen=True)
class PendingCancelUpdate(TenantUpdate):
    """Mark (or clear) a cancellation the provider has not confirmed yet."""

    requested_at: Optional[datetime]

    def values(self) -> Dict[str, Any]:
        return {"cancel_requested_at": self.requested_at}
