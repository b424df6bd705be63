"""In-process entry points wiring the engine's components over one session.

These are what the HTTP layer calls, and what other services in the same
process can call directly::

    async with get_session_factory()() as session:
        decision = await check_admission(session, tenant_id, ResourceKind.CLIENTS)
"""
from __future__ import annotations

from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.core.clock import Clock, utcnow
from quota_engine.core.enums import ResourceKind
from quota_engine.repositories.tenant_repo import TenantRepo
from quota_engine.schemas.quota import QuotaDecision
from quota_engine.schemas.subscription import CancelResult, ReconciliationReport
from quota_engine.services.admission import AdmissionController
from quota_engine.services.gateway import SubscriptionGateway, get_gateway
from quota_engine.services.lifecycle import SubscriptionLifecycleManager
from quota_engine.services.plans import DEFAULT_PLAN_REGISTRY, PlanRegistry, Quota
from quota_engine.services.quotas import QuotaResolver
from quota_engine.services.visibility import VisibilityLimiter


def _resolver(session: AsyncSession, registry: PlanRegistry) -> QuotaResolver:
    return QuotaResolver(TenantRepo(session), registry)


async def resolve_quotas(
    session: AsyncSession,
    tenant_id: UUID,
    registry: PlanRegistry = DEFAULT_PLAN_REGISTRY,
) -> Dict[ResourceKind, Quota]:
    return await _resolver(session, registry).resolve(tenant_id)


async def limit_listing(
    session: AsyncSession,
    tenant_id: UUID,
    kind: ResourceKind,
    base_query: Select,
    registry: PlanRegistry = DEFAULT_PLAN_REGISTRY,
) -> Select:
    limiter = VisibilityLimiter(session, _resolver(session, registry))
    return await limiter.limit(tenant_id, ResourceKind(kind), base_query)


async def check_admission(
    session: AsyncSession,
    tenant_id: UUID,
    kind: ResourceKind,
    registry: PlanRegistry = DEFAULT_PLAN_REGISTRY,
) -> QuotaDecision:
    controller = AdmissionController(session, _resolver(session, registry))
    return await controller.can_create(tenant_id, kind)


async def cancel_subscription(
    session: AsyncSession,
    tenant_id: UUID,
    gateway: Optional[SubscriptionGateway] = None,
    clock: Clock = utcnow,
) -> CancelResult:
    manager = SubscriptionLifecycleManager(session, gateway or get_gateway(), clock)
    return await manager.cancel(tenant_id)


async def reconcile(
    session: AsyncSession,
    gateway: Optional[SubscriptionGateway] = None,
    clock: Clock = utcnow,
) -> ReconciliationReport:
    manager = SubscriptionLifecycleManager(session, gateway or get_gateway(), clock)
    return await manager.reconcile(clock())
