"""Endpoints for a tenant's subscription."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.api.deps import get_db_session, get_lifecycle_manager
from quota_engine.auth.jwt import require_auth
from quota_engine.repositories.ledger_repo import LifecycleLedger
from quota_engine.schemas.subscription import (
    CancelResult,
    LifecycleEventRead,
    SubscriptionHistoryRead,
    SubscriptionRead,
)
from quota_engine.services.lifecycle import SubscriptionLifecycleManager
from quota_engine.services.limits import (
    acquire_cancel_guard,
    check_rate_limit,
    release_cancel_guard,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/subscription", response_model=SubscriptionRead)
async def subscription(
    auth=Depends(require_auth),
    manager: SubscriptionLifecycleManager = Depends(get_lifecycle_manager),
):
    tenant_id = auth["tenant_id"]
    await check_rate_limit(tenant_id)
    return await manager.describe(tenant_id)


@router.get("/history", response_model=SubscriptionHistoryRead)
async def history(
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    tenant_id = auth["tenant_id"]
    await check_rate_limit(tenant_id)
    events = await LifecycleLedger(db).history(tenant_id)
    return SubscriptionHistoryRead(
        tenant_id=tenant_id,
        events=[LifecycleEventRead.model_validate(event) for event in events],
    )


@router.post("/cancel", response_model=CancelResult)
async def cancel(
    auth=Depends(require_auth),
    manager: SubscriptionLifecycleManager = Depends(get_lifecycle_manager),
):
    tenant_id = auth["tenant_id"]
    await check_rate_limit(tenant_id)

    await acquire_cancel_guard(tenant_id)
    try:
        result = await manager.cancel(tenant_id)
    finally:
        await release_cancel_guard(tenant_id)

    logger.info(
        f"Cancel request for tenant {tenant_id} -> {result.subscription_status.value}"
    )
    return result
