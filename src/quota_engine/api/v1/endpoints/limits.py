"""Endpoints exposing a tenant's quotas and usage."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.api.deps import (
    get_admission_controller,
    get_db_session,
    get_quota_resolver,
)
from quota_engine.auth.jwt import require_auth
from quota_engine.core.enums import ResourceKind
from quota_engine.repositories.resource_repo import ResourceRepo
from quota_engine.schemas.quota import KindUsage, LimitsRead, QuotaDecision
from quota_engine.services.admission import AdmissionController
from quota_engine.services.limits import check_rate_limit
from quota_engine.services.quotas import QuotaResolver


router = APIRouter(prefix="/limits", tags=["limits"])


@router.get("/current", response_model=LimitsRead)
async def current_limits(
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    resolver: QuotaResolver = Depends(get_quota_resolver),
):
    tenant_id = auth["tenant_id"]
    await check_rate_limit(tenant_id)

    tier = await resolver.tier_for(tenant_id)
    quotas = await resolver.resolve(tenant_id)

    resources = {}
    for kind, quota in quotas.items():
        count = await ResourceRepo(db, kind).count_for_tenant(tenant_id)
        visible = count if quota.unlimited else min(count, quota.limit)
        resources[kind] = KindUsage(limit=quota.limit, count=count, visible=visible)

    return LimitsRead(plan_tier=tier, resources=resources)


@router.get("/{kind}/admission", response_model=QuotaDecision)
async def admission(
    kind: ResourceKind,
    auth=Depends(require_auth),
    controller: AdmissionController = Depends(get_admission_controller),
):
    tenant_id = auth["tenant_id"]
    await check_rate_limit(tenant_id)
    return await controller.can_create(tenant_id, kind)
