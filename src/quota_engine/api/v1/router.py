"""Version 1 API router."""
from fastapi import APIRouter

from quota_engine.api.v1.endpoints import billing, limits, resources, tenants, webhooks


api_router = APIRouter()
api_router.include_router(tenants.router)
api_router.include_router(limits.router)
api_router.include_router(resources.router)
api_router.include_router(billing.router)
api_router.include_router(webhooks.router)
