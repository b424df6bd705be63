"""Rate limiting and the in-flight cancellation guard."""
from __future__ import annotations

import time
from uuid import UUID

import redis.asyncio as redis
from fastapi import HTTPException, status

from quota_engine.core.config import settings

_redis_client: redis.Redis | None = None


async def _get_client() -> redis.Redis:
    """Return a cached Redis client instance."""

    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            str(settings.REDIS_URI), decode_responses=True
        )
    return _redis_client


async def close_client() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None


async def check_rate_limit(tenant_id: UUID | str) -> None:
    """Enforce a simple fixed-window rate limit per tenant."""

    client = await _get_client()
    minute_window = int(time.time() // 60)
    key = f"rl:{tenant_id}:{minute_window}"
    current = await client.incr(key)
    if current == 1:
        await client.expire(key, 60)
    if current > settings.RATE_LIMIT_RPM:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded",
        )


async def acquire_cancel_guard(tenant_id: UUID | str) -> None:
    """Reject a cancel request while another one for the tenant is in flight."""

    client = await _get_client()
    was_set = await client.set(
        f"cancel:{tenant_id}", "1", ex=settings.limits.cancel_guard_seconds, nx=True
    )
    if not was_set:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A cancellation for this tenant is already in progress",
        )


async def release_cancel_guard(tenant_id: UUID | str) -> None:
    client = await _get_client()
    await client.delete(f"cancel:{tenant_id}")
