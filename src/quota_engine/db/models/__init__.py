"""Database models package exports."""

from quota_engine.db.models.lifecycle_event import LifecycleEvent
from quota_engine.db.models.resources import (
    RESOURCE_MODELS,
    Appointment,
    Client,
    Conversation,
    Estimate,
    Invoice,
    Job,
    Material,
    PartnerOrganization,
    Supplier,
    Technician,
    TenantResource,
    model_for,
)
from quota_engine.db.models.subscription import Subscription
from quota_engine.db.models.tenant import Tenant

__all__ = [
    "Appointment",
    "Client",
    "Conversation",
    "Estimate",
    "Invoice",
    "Job",
    "LifecycleEvent",
    "Material",
    "PartnerOrganization",
    "RESOURCE_MODELS",
    "Subscription",
    "Supplier",
    "Technician",
    "Tenant",
    "TenantResource",
    "model_for",
]
