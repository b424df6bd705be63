"""Repository layer package."""

from quota_engine.repositories.ledger_repo import LifecycleLedger
from quota_engine.repositories.resource_repo import ResourceRepo
from quota_engine.repositories.subscription_repo import SubscriptionRepo
from quota_engine.repositories.tenant_repo import TenantRepo

__all__ = [
    "LifecycleLedger",
    "ResourceRepo",
    "SubscriptionRepo",
    "TenantRepo",
]
