"""Periodic reconciliation run inside the application process."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quota_engine.core.config import settings
from quota_engine.db.session import get_session_factory
from quota_engine.schemas.subscription import ReconciliationReport
from quota_engine.services.gateway import SubscriptionGateway, get_gateway
from quota_engine.services.lifecycle import SubscriptionLifecycleManager


logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Call :meth:`SubscriptionLifecycleManager.reconcile` every interval."""

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        gateway_factory: Callable[[], SubscriptionGateway] = get_gateway,
    ) -> None:
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.scheduler.reconcile_interval_seconds
        )
        self._session_factory = session_factory
        self._gateway_factory = gateway_factory
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> ReconciliationReport:
        factory = self._session_factory or get_session_factory()
        async with factory() as session:
            manager = SubscriptionLifecycleManager(session, self._gateway_factory())
            return await manager.reconcile()

    async def _loop(self) -> None:
        while True:
            try:
                report = await self.run_once()
                if report.changed:
                    logger.info(f"Reconciliation changed tenants: {report.model_dump()}")
            except Exception:
                # keep ticking; the next pass retries whatever failed
                logger.exception("Reconciliation pass failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Starting reconciliation every {self.interval_seconds}s")
        self._task = asyncio.create_task(self._loop(), name="reconciliation")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Reconciliation scheduler stopped")
