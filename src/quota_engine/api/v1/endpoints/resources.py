"""Quota-governed records: listings go through the visibility limiter, writes
through the admission check."""
from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.api.deps import (
    get_admission_controller,
    get_db_session,
    get_visibility_limiter,
)
from quota_engine.auth.jwt import require_auth
from quota_engine.core.enums import ResourceKind
from quota_engine.repositories.resource_repo import ResourceRepo
from quota_engine.schemas.resource import ResourceCreate, ResourceRead
from quota_engine.services.admission import AdmissionController
from quota_engine.services.limits import check_rate_limit
from quota_engine.services.visibility import VisibilityLimiter


router = APIRouter(prefix="/resources", tags=["resources"])


@router.get("/{kind}", response_model=List[ResourceRead])
async def list_resources(
    kind: ResourceKind,
    auth=Depends(require_auth),
    limiter: VisibilityLimiter = Depends(get_visibility_limiter),
):
    tenant_id = auth["tenant_id"]
    await check_rate_limit(tenant_id)
    return await limiter.list_visible(tenant_id, kind)


@router.post("/{kind}", response_model=ResourceRead, status_code=status.HTTP_201_CREATED)
async def create_resource(
    kind: ResourceKind,
    payload: ResourceCreate,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    controller: AdmissionController = Depends(get_admission_controller),
):
    tenant_id = auth["tenant_id"]
    await check_rate_limit(tenant_id)

    decision = await controller.can_create(tenant_id, kind)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=decision.message,
        )

    return await ResourceRepo(db, kind).create(tenant_id, payload.name)


@router.delete("/{kind}/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_resource(
    kind: ResourceKind,
    record_id: UUID,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    tenant_id = auth["tenant_id"]
    await check_rate_limit(tenant_id)

    if not await ResourceRepo(db, kind).delete(tenant_id, record_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{kind.label.capitalize()} record not found",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
