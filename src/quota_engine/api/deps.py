"""Shared FastAPI dependencies."""
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.db.session import get_db
from quota_engine.repositories.tenant_repo import TenantRepo
from quota_engine.services.admission import AdmissionController
from quota_engine.services.gateway import PayPalGateway, SubscriptionGateway, get_gateway
from quota_engine.services.lifecycle import SubscriptionLifecycleManager
from quota_engine.services.plans import DEFAULT_PLAN_REGISTRY, PlanRegistry
from quota_engine.services.quotas import QuotaResolver
from quota_engine.services.visibility import VisibilityLimiter


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


def get_plan_registry() -> PlanRegistry:
    return DEFAULT_PLAN_REGISTRY


def get_subscription_gateway() -> SubscriptionGateway:
    return get_gateway()


def get_webhook_verifier() -> PayPalGateway:
    return get_gateway()


def get_quota_resolver(
    db: AsyncSession = Depends(get_db_session),
    registry: PlanRegistry = Depends(get_plan_registry),
) -> QuotaResolver:
    # one resolver per request, shared by the limiter and the admission check
    return QuotaResolver(TenantRepo(db), registry)


def get_visibility_limiter(
    db: AsyncSession = Depends(get_db_session),
    resolver: QuotaResolver = Depends(get_quota_resolver),
) -> VisibilityLimiter:
    return VisibilityLimiter(db, resolver)


def get_admission_controller(
    db: AsyncSession = Depends(get_db_session),
    resolver: QuotaResolver = Depends(get_quota_resolver),
) -> AdmissionController:
    return AdmissionController(db, resolver)


def get_lifecycle_manager(
    db: AsyncSession = Depends(get_db_session),
    gateway: SubscriptionGateway = Depends(get_subscription_gateway),
) -> SubscriptionLifecycleManager:
    return SubscriptionLifecycleManager(db, gateway)
