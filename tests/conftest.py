"""
Pytest configuration for the application
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, List, Optional
from uuid import UUID

import httpx
import jwt
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from quota_engine.api.deps import get_subscription_gateway, get_webhook_verifier
from quota_engine.core.config import settings
from quota_engine.core.enums import PlanTier, ResourceKind, SubscriptionStatus
from quota_engine.core.exceptions import GatewayError
from quota_engine.db import models  # noqa: F401  (registers every table)
from quota_engine.db.base import Base
from quota_engine.db.models.tenant import Tenant
from quota_engine.db.session import get_db
from quota_engine.main import create_application
from quota_engine.repositories.resource_repo import ResourceRepo
from quota_engine.services import limits as limits_service
from quota_engine.services.gateway import ExternalSubscriptionDetail


# Set test environment and override runtime settings to avoid external deps
os.environ["ENV"] = "test"
settings.ENV = "test"
settings.scheduler.enabled = False


class FakeRedis:
    """Minimal async Redis stub for rate limiting and the cancel guard."""

    def __init__(self) -> None:
        self.store: Dict[str, int | str] = {}

    async def incr(self, key: str) -> int:
        current = int(self.store.get(key, 0)) + 1
        self.store[key] = current
        return current

    async def expire(self, key: str, seconds: int) -> None:
        self.store.setdefault(f"{key}:ttl", seconds)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool:
        if nx and key in self.store:
            return False
        self.store[key] = value
        if ex is not None:
            self.store[f"{key}:ttl"] = ex
        return True

    async def delete(self, key: str) -> int:
        self.store.pop(f"{key}:ttl", None)
        return 1 if self.store.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        return None


class FakeGateway:
    """In-memory payment provider implementing the gateway protocol."""

    def __init__(self) -> None:
        self.details: Dict[str, ExternalSubscriptionDetail] = {}
        self.cancelled: List[str] = []
        self.calls: List[tuple] = []
        self.detail_error: Optional[GatewayError] = None
        self.cancel_error: Optional[GatewayError] = None
        self.webhook_valid = True

    def set_detail(
        self,
        external_id: str,
        status: str = "ACTIVE",
        next_billing_at: Optional[datetime] = None,
    ) -> None:
        self.details[external_id] = ExternalSubscriptionDetail(
            external_id=external_id, status=status, next_billing_at=next_billing_at
        )

    async def get_detail(self, external_subscription_id: str) -> ExternalSubscriptionDetail:
        self.calls.append(("get_detail", external_subscription_id))
        if self.detail_error is not None:
            raise self.detail_error
        return self.details.get(
            external_subscription_id,
            ExternalSubscriptionDetail(external_id=external_subscription_id, status="ACTIVE"),
        )

    async def cancel(self, external_subscription_id: str, reason: str) -> None:
        self.calls.append(("cancel", external_subscription_id))
        if self.cancel_error is not None:
            raise self.cancel_error
        self.cancelled.append(external_subscription_id)

    async def verify_webhook(self, headers, body: bytes) -> bool:
        return self.webhook_valid


class FixedClock:
    """Clock whose current instant the test controls."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def build_auth_header(tenant_id: UUID) -> Dict[str, str]:
    token = jwt.encode({"tenant_id": str(tenant_id)}, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_db_engine(tmp_path):
    """
    Create a file-backed SQLite engine with every table.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'quota_engine.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Session used by a test to drive services directly.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    """Patch the limits module to use an in-memory Redis stub."""

    fake = FakeRedis()
    monkeypatch.setattr(limits_service, "_redis_client", fake, raising=False)
    yield fake
    monkeypatch.setattr(limits_service, "_redis_client", None, raising=False)


@pytest.fixture
def seed_tenant(session_factory):
    """Insert a tenant in its own committed transaction."""

    async def _seed(
        *,
        name: str = "Acme Plumbing",
        plan_tier: PlanTier = PlanTier.FREE,
        status: SubscriptionStatus = SubscriptionStatus.NONE,
        started_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
        external_id: Optional[str] = None,
        cancel_requested_at: Optional[datetime] = None,
    ) -> Tenant:
        async with session_factory() as session:
            tenant = Tenant(
                name=name,
                plan_tier=plan_tier,
                subscription_status=status,
                subscription_started_at=started_at,
                subscription_ends_at=ends_at,
                external_subscription_id=external_id,
                cancel_requested_at=cancel_requested_at,
            )
            session.add(tenant)
            await session.commit()
            return tenant

    return _seed


@pytest.fixture
def seed_resources(session_factory):
    """Insert ``count`` records of a kind with strictly increasing creation times."""

    async def _seed(tenant_id: UUID, kind: ResourceKind, count: int) -> list:
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        async with session_factory() as session:
            repo = ResourceRepo(session, kind)
            existing = await repo.count_for_tenant(tenant_id)
            records = [
                await repo.create(
                    tenant_id,
                    f"{kind.value}-{existing + index + 1}",
                    created_at=start + timedelta(minutes=existing + index),
                )
                for index in range(count)
            ]
            await session.commit()
            return records

    return _seed


@pytest_asyncio.fixture
async def test_app(session_factory, gateway, fake_redis) -> AsyncGenerator[FastAPI, None]:
    """
    Create a FastAPI test application.
    """
    app = create_application()

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_subscription_gateway] = lambda: gateway
    app.dependency_overrides[get_webhook_verifier] = lambda: gateway
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Create an async HTTP client for testing.
    """
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def auth_headers():
    return build_auth_header
