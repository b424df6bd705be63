"""Quota-governed business records.

Only the columns the quota engine needs are modelled here: the owning
tenant, a display name and the creation instant that drives visibility
ordering. The CRUD layer owns everything else about these tables.
"""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from quota_engine.core.clock import utcnow
from quota_engine.core.enums import ResourceKind
from quota_engine.db.base import Base


class TenantResource:
    """Columns shared by every tenant-scoped record."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Python-side default keeps sub-second creation order on every backend
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    @declared_attr
    def tenant_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(Uuid, nullable=False, index=True)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<{type(self).__name__} {self.id} tenant={self.tenant_id}>"


class Client(TenantResource, Base):
    __tablename__ = "clients"


class Job(TenantResource, Base):
    __tablename__ = "jobs"


class Invoice(TenantResource, Base):
    __tablename__ = "invoices"


class Estimate(TenantResource, Base):
    __tablename__ = "estimates"


class Technician(TenantResource, Base):
    __tablename__ = "technicians"


class Conversation(TenantResource, Base):
    __tablename__ = "conversations"


class PartnerOrganization(TenantResource, Base):
    """Insurance companies and other partner organizations."""

    __tablename__ = "partner_organizations"


class Supplier(TenantResource, Base):
    __tablename__ = "suppliers"


class Material(TenantResource, Base):
    __tablename__ = "materials"


class Appointment(TenantResource, Base):
    __tablename__ = "appointments"


RESOURCE_MODELS: dict[ResourceKind, type[TenantResource]] = {
    ResourceKind.CLIENTS: Client,
    ResourceKind.JOBS: Job,
    ResourceKind.INVOICES: Invoice,
    ResourceKind.ESTIMATES: Estimate,
    ResourceKind.TECHNICIANS: Technician,
    ResourceKind.CONVERSATIONS: Conversation,
    ResourceKind.PARTNER_ORGANIZATIONS: PartnerOrganization,
    ResourceKind.SUPPLIERS: Supplier,
    ResourceKind.MATERIALS: Material,
    ResourceKind.APPOINTMENTS: Appointment,
}


def model_for(kind: ResourceKind) -> type[TenantResource]:
    return RESOURCE_MODELS[ResourceKind(kind)]
