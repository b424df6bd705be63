"""FastAPI application factory."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from quota_engine import __version__
from quota_engine.api.v1.router import api_router
from quota_engine.core.config import settings
from quota_engine.core.exceptions import register_exception_handlers
from quota_engine.core.logging import setup_logging
from quota_engine.db.session import dispose_engine
from quota_engine.services.gateway import close_gateway
from quota_engine.services.limits import close_client
from quota_engine.services.scheduler import ReconciliationScheduler


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    scheduler = None
    if settings.scheduler.enabled:
        scheduler = ReconciliationScheduler()
        scheduler.start()
    app.state.scheduler = scheduler
    logger.info(f"{settings.PROJECT_NAME} started ({settings.ENV})")
    yield
    if scheduler is not None:
        await scheduler.stop()
    await close_gateway()
    await close_client()
    await dispose_engine()
    logger.info(f"{settings.PROJECT_NAME} shut down")


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(api_router, prefix=f"{settings.API_PREFIX}/v1")

    @app.get("/health", tags=["health"])
    async def health_check():
        return {"status": "ok"}

    return app


app = create_application()
