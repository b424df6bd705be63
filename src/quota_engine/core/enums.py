"""Closed enumerations shared by the models, services and schemas."""
from enum import Enum


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class EventSource(str, Enum):
    USER_ACTION = "user_action"
    EXTERNAL_NOTIFICATION = "external_notification"
    SCHEDULED_RECONCILIATION = "scheduled_reconciliation"


class ResourceKind(str, Enum):
    """Every quota-governed entity type."""

    CLIENTS = "clients"
    JOBS = "jobs"
    INVOICES = "invoices"
    ESTIMATES = "estimates"
    TECHNICIANS = "technicians"
    CONVERSATIONS = "conversations"
    PARTNER_ORGANIZATIONS = "partner_organizations"
    SUPPLIERS = "suppliers"
    MATERIALS = "materials"
    APPOINTMENTS = "appointments"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")
