"""Quota resolution, the visibility limiter and the admission controller."""
from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import select

from quota_engine.core.enums import PlanTier, ResourceKind, SubscriptionStatus
from quota_engine.core.exceptions import TenantNotFound
from quota_engine.db.models.resources import Client
from quota_engine.repositories.resource_repo import ResourceRepo
from quota_engine.repositories.tenant_repo import TenantRepo
from quota_engine.services import engine
from quota_engine.services.admission import AdmissionController
from quota_engine.services.plans import build_registry
from quota_engine.services.quotas import QuotaResolver
from quota_engine.services.visibility import VisibilityLimiter


def _names(records) -> list[str]:
    return [record.name for record in records]


@pytest.mark.asyncio
async def test_resolver_returns_quotas_for_stored_tier(test_db, seed_tenant):
    free = await seed_tenant()
    pro = await seed_tenant(plan_tier=PlanTier.PRO, status=SubscriptionStatus.ACTIVE)

    resolver = QuotaResolver(TenantRepo(test_db))
    free_quotas = await resolver.resolve(free.id)
    pro_quotas = await resolver.resolve(pro.id)

    assert set(free_quotas) == set(ResourceKind)
    assert all(quota.limit == 3 for quota in free_quotas.values())
    assert all(quota.unlimited for quota in pro_quotas.values())


@pytest.mark.asyncio
async def test_resolver_caches_the_tier_per_instance(test_db, seed_tenant, monkeypatch):
    tenant = await seed_tenant()
    repo = TenantRepo(test_db)
    calls = 0
    original_get = repo.get

    async def _counting_get(tenant_id):
        nonlocal calls
        calls += 1
        return await original_get(tenant_id)

    monkeypatch.setattr(repo, "get", _counting_get)
    resolver = QuotaResolver(repo)

    await resolver.quota_for(tenant.id, ResourceKind.CLIENTS)
    await resolver.quota_for(tenant.id, ResourceKind.JOBS)
    await resolver.resolve(tenant.id)
    assert calls == 1

    resolver.forget(tenant.id)
    await resolver.resolve(tenant.id)
    assert calls == 2


@pytest.mark.asyncio
async def test_resolver_raises_for_unknown_tenant(test_db):
    with pytest.raises(TenantNotFound):
        await QuotaResolver(TenantRepo(test_db)).resolve(uuid4())


@pytest.mark.asyncio
async def test_cancelled_tenant_in_grace_period_keeps_pro_quotas(test_db, seed_tenant):
    tenant = await seed_tenant(plan_tier=PlanTier.PRO, status=SubscriptionStatus.CANCELLED)

    quotas = await engine.resolve_quotas(test_db, tenant.id)

    assert quotas[ResourceKind.CLIENTS].unlimited


@pytest.mark.asyncio
async def test_listing_never_exceeds_the_quota(test_db, seed_tenant, seed_resources):
    tenant = await seed_tenant()
    await seed_resources(tenant.id, ResourceKind.CLIENTS, 7)

    limiter = VisibilityLimiter(test_db, QuotaResolver(TenantRepo(test_db)))
    visible = await limiter.list_visible(tenant.id, ResourceKind.CLIENTS)

    assert len(visible) == 3
    # oldest three survive, listed in the base query's newest-first order
    assert _names(visible) == ["clients-3", "clients-2", "clients-1"]


@pytest.mark.asyncio
async def test_limiter_keeps_caller_filters(test_db, seed_tenant, seed_resources):
    tenant = await seed_tenant()
    await seed_resources(tenant.id, ResourceKind.CLIENTS, 5)

    base = (
        select(Client)
        .where(Client.tenant_id == tenant.id, Client.name != "clients-2")
        .order_by(Client.name.asc())
    )
    query = await engine.limit_listing(test_db, tenant.id, ResourceKind.CLIENTS, base)
    rows = (await test_db.execute(query)).scalars().all()

    assert _names(rows) == ["clients-1", "clients-3"]


@pytest.mark.asyncio
async def test_limiter_is_per_tenant(test_db, seed_tenant, seed_resources):
    first = await seed_tenant(name="First")
    second = await seed_tenant(name="Second")
    await seed_resources(first.id, ResourceKind.JOBS, 4)
    await seed_resources(second.id, ResourceKind.JOBS, 2)

    limiter = VisibilityLimiter(test_db, QuotaResolver(TenantRepo(test_db)))

    assert len(await limiter.list_visible(first.id, ResourceKind.JOBS)) == 3
    assert len(await limiter.list_visible(second.id, ResourceKind.JOBS)) == 2


@pytest.mark.asyncio
async def test_unlimited_quota_returns_query_unchanged(test_db, seed_tenant, seed_resources):
    tenant = await seed_tenant(plan_tier=PlanTier.PRO, status=SubscriptionStatus.ACTIVE)
    await seed_resources(tenant.id, ResourceKind.INVOICES, 6)

    repo = ResourceRepo(test_db, ResourceKind.INVOICES)
    base = repo.base_query(tenant.id)
    limiter = VisibilityLimiter(test_db, QuotaResolver(TenantRepo(test_db)))

    assert await limiter.limit(tenant.id, ResourceKind.INVOICES, base) is base
    assert len(await limiter.list_visible(tenant.id, ResourceKind.INVOICES)) == 6


@pytest.mark.asyncio
async def test_deleting_a_visible_record_reveals_the_next_oldest(
    test_db, seed_tenant, seed_resources
):
    tenant = await seed_tenant()
    records = await seed_resources(tenant.id, ResourceKind.SUPPLIERS, 4)
    limiter = VisibilityLimiter(test_db, QuotaResolver(TenantRepo(test_db)))

    before = await limiter.list_visible(tenant.id, ResourceKind.SUPPLIERS)
    assert "suppliers-4" not in _names(before)

    assert await ResourceRepo(test_db, ResourceKind.SUPPLIERS).delete(tenant.id, records[1].id)
    await test_db.commit()

    after = await limiter.list_visible(tenant.id, ResourceKind.SUPPLIERS)
    assert _names(after) == ["suppliers-4", "suppliers-3", "suppliers-1"]


@pytest.mark.asyncio
async def test_admission_at_and_below_the_quota(test_db, seed_tenant, seed_resources):
    tenant = await seed_tenant()
    await seed_resources(tenant.id, ResourceKind.ESTIMATES, 2)
    controller = AdmissionController(test_db, QuotaResolver(TenantRepo(test_db)))

    below = await controller.can_create(tenant.id, ResourceKind.ESTIMATES)
    assert below.allowed
    assert below.current_count == 2

    await seed_resources(tenant.id, ResourceKind.ESTIMATES, 1)
    at_quota = await controller.can_create(tenant.id, ResourceKind.ESTIMATES)
    assert not at_quota.allowed
    assert at_quota.current_count == 3
    assert at_quota.limit == 3
    assert at_quota.resource_kind is ResourceKind.ESTIMATES
    assert at_quota.message == "Limit of 3 estimates reached for your plan. Upgrade to add more."


@pytest.mark.asyncio
async def test_admission_counts_rows_hidden_by_the_limiter(
    test_db, seed_tenant, seed_resources
):
    tenant = await seed_tenant()
    await seed_resources(tenant.id, ResourceKind.MATERIALS, 5)

    decision = await engine.check_admission(test_db, tenant.id, ResourceKind.MATERIALS)

    assert decision.current_count == 5
    assert not decision.allowed


@pytest.mark.asyncio
async def test_admission_for_unlimited_tenant(test_db, seed_tenant, seed_resources):
    tenant = await seed_tenant(plan_tier=PlanTier.PRO, status=SubscriptionStatus.ACTIVE)
    await seed_resources(tenant.id, ResourceKind.CLIENTS, 12)

    decision = await engine.check_admission(test_db, tenant.id, ResourceKind.CLIENTS)

    assert decision.allowed
    assert decision.limit is None
    assert decision.message == "OK"


@pytest.mark.asyncio
async def test_forced_insert_past_the_quota_stays_hidden(
    test_db, seed_tenant, seed_resources
):
    tenant = await seed_tenant()
    await seed_resources(tenant.id, ResourceKind.CLIENTS, 3)

    decision = await engine.check_admission(test_db, tenant.id, ResourceKind.CLIENTS)
    assert (decision.allowed, decision.current_count, decision.limit) == (False, 3, 3)

    # a racing request that already passed its own check inserts anyway
    await seed_resources(tenant.id, ResourceKind.CLIENTS, 1)

    limiter = VisibilityLimiter(test_db, QuotaResolver(TenantRepo(test_db)))
    visible = await limiter.list_visible(tenant.id, ResourceKind.CLIENTS)
    assert len(visible) == 3
    assert "clients-4" not in _names(visible)


@pytest.mark.asyncio
async def test_injected_registry_drives_every_component(test_db, seed_tenant, seed_resources):
    tenant = await seed_tenant()
    await seed_resources(tenant.id, ResourceKind.CLIENTS, 2)
    registry = build_registry(
        {
            PlanTier.FREE: {kind: 1 for kind in ResourceKind},
            PlanTier.PRO: {kind: None for kind in ResourceKind},
        }
    )

    decision = await engine.check_admission(
        test_db, tenant.id, ResourceKind.CLIENTS, registry=registry
    )
    repo = ResourceRepo(test_db, ResourceKind.CLIENTS)
    query = await engine.limit_listing(
        test_db, tenant.id, ResourceKind.CLIENTS, repo.base_query(tenant.id), registry=registry
    )

    assert decision.limit == 1
    assert _names(await repo.fetch(query)) == ["clients-1"]
