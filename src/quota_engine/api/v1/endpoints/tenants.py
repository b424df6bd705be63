"""Endpoints for managing tenants (bootstrap utilities)."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.api.deps import get_db_session
from quota_engine.repositories.tenant_repo import TenantRepo
from quota_engine.schemas.subscription import SubscriptionRead


router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.post("/create", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    name: str,
    db: AsyncSession = Depends(get_db_session),
):
    tenant = await TenantRepo(db).create(name)
    return SubscriptionRead(
        tenant_id=tenant.id,
        plan_tier=tenant.plan_tier,
        subscription_status=tenant.subscription_status,
    )
