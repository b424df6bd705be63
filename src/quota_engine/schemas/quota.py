"""Pydantic schemas for quota decisions and limits."""
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from quota_engine.core.enums import PlanTier, ResourceKind


class QuotaDecision(BaseModel):
    """Outcome of an admission check. Never persisted."""

    resource_kind: ResourceKind = Field(..., description="Kind being created")
    current_count: int = Field(..., ge=0, description="Existing rows of that kind")
    limit: Optional[int] = Field(
        default=None, description="Quota for the kind, null when unlimited"
    )
    allowed: bool = Field(..., description="Whether one more row fits the quota")

    model_config = ConfigDict(frozen=True)

    @property
    def message(self) -> str:
        if self.allowed:
            return "OK"
        return (
            f"Limit of {self.limit} {self.resource_kind.label} reached for your plan. "
            "Upgrade to add more."
        )


class KindUsage(BaseModel):
    limit: Optional[int] = Field(default=None, description="Null when unlimited")
    count: int = Field(..., ge=0)
    visible: int = Field(..., ge=0, description="Rows returned by listings")


class LimitsRead(BaseModel):
    """Current quotas and usage for every resource kind of a tenant."""

    plan_tier: PlanTier
    resources: Dict[ResourceKind, KindUsage]
