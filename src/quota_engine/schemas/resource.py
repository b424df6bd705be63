"""Pydantic schemas for quota-governed records"""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ResourceCreate(BaseModel):
    """Schema for creating a record of any resource kind."""

    name: str = Field(..., min_length=1, description="Display name")


class ResourceRead(BaseModel):
    """Schema returned when listing records."""

    id: UUID = Field(..., description="Record identifier")
    tenant_id: UUID = Field(..., description="Tenant identifier")
    name: str = Field(..., description="Display name")
    created_at: datetime = Field(..., description="Creation timestamp")

    model_config = ConfigDict(from_attributes=True)
