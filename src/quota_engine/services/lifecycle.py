"""Subscription lifecycle manager.

Owns every write to a tenant's subscription columns. Each transition is a
single conditional UPDATE keyed on the status the caller last read, so
concurrent request handlers and reconciliation sweeps never overwrite each
other's work: a lost race is retried once after a fresh read and then
reported as :class:`ConcurrentModification`.

Each public operation is its own unit of work: it commits on success and
rolls back on failure, so a tenant is never left half-transitioned.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.core.clock import Clock, as_utc, utcnow
from quota_engine.core.config import settings
from quota_engine.core.enums import EventSource, SubscriptionStatus
from quota_engine.core.exceptions import (
    ConcurrentModification,
    GatewayError,
    GatewayRejected,
    GatewayUnavailable,
    InvalidTransition,
    TenantNotFound,
)
from quota_engine.db.models.lifecycle_event import LifecycleEvent
from quota_engine.db.models.tenant import Tenant
from quota_engine.repositories.ledger_repo import LifecycleLedger
from quota_engine.repositories.subscription_repo import SubscriptionRepo
from quota_engine.repositories.tenant_repo import TenantRepo
from quota_engine.schemas.subscription import (
    CancelResult,
    LifecycleEventRead,
    ReconciliationReport,
    SubscriptionRead,
)
from quota_engine.services.gateway import (
    PROVIDER_ACTIVE,
    PROVIDER_ENDED_STATUSES,
    ExternalSubscriptionDetail,
    SubscriptionGateway,
)
from quota_engine.services.transitions import (
    ActivateUpdate,
    CancelUpdate,
    ExpireUpdate,
    PendingCancelUpdate,
    RenewUpdate,
    TenantUpdate,
    can_transition,
)


logger = logging.getLogger(__name__)

# Given the freshly read tenant, return the update to apply or None for a no-op
Planner = Callable[[Tenant], Optional[TenantUpdate]]


class SubscriptionLifecycleManager:
    """State machine over ``Tenant.subscription_status``."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: SubscriptionGateway,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.clock = clock
        self.tenants = TenantRepo(session)
        self.history = SubscriptionRepo(session)
        self.ledger = LifecycleLedger(session)

    # ------------------------------------------------------------------
    # building blocks
    # ------------------------------------------------------------------

    async def _load(self, tenant_id: UUID) -> Tenant:
        tenant = await self.tenants.get(tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)
        return tenant

    async def _apply(
        self,
        tenant: Tenant,
        fields: TenantUpdate,
        source: EventSource,
        now: datetime,
    ) -> bool:
        """Conditionally write ``fields`` and record the status change, if any."""

        previous = SubscriptionStatus(tenant.subscription_status)
        if not await self.tenants.update(tenant.id, fields, expected_status=previous):
            return False

        target = fields.target_status
        if target is not None and target != previous:
            await self.ledger.append(
                LifecycleEvent(
                    tenant_id=tenant.id,
                    previous_status=previous,
                    new_status=target,
                    effective_at=now,
                    source=source,
                )
            )
            logger.info(
                f"Tenant {tenant.id} subscription {previous.value} -> {target.value} "
                f"({source.value})"
            )
        return True

    async def _transition(
        self,
        tenant_id: UUID,
        planner: Planner,
        source: EventSource,
        now: datetime,
    ) -> Tuple[Tenant, bool]:
        """Plan and apply an update, retrying once on a lost race.

        Returns the fresh tenant and whether anything was written.
        """

        for attempt in range(2):
            tenant = await self._load(tenant_id)
            fields = planner(tenant)
            if fields is None:
                return tenant, False
            if await self._apply(tenant, fields, source, now):
                return await self._load(tenant_id), True
            logger.warning(
                f"Concurrent update on tenant {tenant_id} "
                f"(expected {tenant.subscription_status.value}), attempt {attempt + 1}"
            )
        raise ConcurrentModification(tenant_id, tenant.subscription_status.value)

    async def _commit(self) -> None:
        await self.session.commit()

    async def _rollback(self) -> None:
        await self.session.rollback()

    @staticmethod
    def _require(tenant: Tenant, target: SubscriptionStatus) -> None:
        if not can_transition(tenant.subscription_status, target):
            raise InvalidTransition(
                tenant.id, SubscriptionStatus(tenant.subscription_status).value, target.value
            )

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    async def activate(
        self,
        tenant_id: UUID,
        external_subscription_id: Optional[str],
        next_billing_at: Optional[datetime] = None,
        source: EventSource = EventSource.EXTERNAL_NOTIFICATION,
        amount: Optional[Decimal] = None,
    ) -> Tenant:
        """A checkout succeeded: ``none``/``expired`` -> ``active``."""

        now = self.clock()
        ends_at = as_utc(next_billing_at) or now + timedelta(
            days=settings.billing.default_period_days
        )

        def plan(tenant: Tenant) -> Optional[TenantUpdate]:
            if (
                tenant.subscription_status == SubscriptionStatus.ACTIVE
                and tenant.external_subscription_id == external_subscription_id
            ):
                return None
            self._require(tenant, SubscriptionStatus.ACTIVE)
            return ActivateUpdate(
                external_subscription_id=external_subscription_id,
                started_at=now,
                ends_at=ends_at,
            )

        try:
            tenant, applied = await self._transition(tenant_id, plan, source, now)
            if applied:
                await self.history.create(
                    tenant_id,
                    external_subscription_id,
                    started_at=now,
                    expires_at=ends_at,
                    amount=amount
                    if amount is not None
                    else Decimal(str(settings.billing.pro_amount)),
                    currency=settings.billing.currency,
                )
            await self._commit()
        except Exception:
            await self._rollback()
            raise
        return tenant

    async def cancel(self, tenant_id: UUID) -> CancelResult:
        """User-initiated cancellation.

        1. Read the provider's view of the subscription (best effort).
        2. Cancel at the provider; any failure aborts with no status change.
        3. Grace period ends at the provider's next billing instant, else the
           stored ``subscription_ends_at`` is kept.
        4. ``active`` -> ``cancelled`` and a ledger event.
        5. Mark the most recent history row cancelled.

        Cancelling an already cancelled tenant is a successful no-op.
        """

        now = self.clock()
        tenant = await self._load(tenant_id)

        if tenant.subscription_status == SubscriptionStatus.CANCELLED:
            logger.info(f"Tenant {tenant_id} already cancelled; nothing to do")
            return self._cancel_result(tenant, already_cancelled=True)
        self._require(tenant, SubscriptionStatus.CANCELLED)

        detail: Optional[ExternalSubscriptionDetail] = None
        external_id = tenant.external_subscription_id
        if external_id:
            # no transaction stays open while the provider is called
            await self._rollback()
            try:
                detail = await self.gateway.get_detail(external_id)
            except GatewayError as exc:
                logger.warning(
                    f"Could not read subscription {external_id} for tenant {tenant_id}; "
                    f"continuing without provider details: {exc.message}"
                )

            try:
                await self.gateway.cancel(external_id, settings.billing.cancel_reason)
            except GatewayUnavailable:
                await self._rollback()
                await self._mark_cancel_pending(tenant_id, now)
                raise
            except GatewayRejected:
                await self._rollback()
                raise

        ends_at = detail.next_billing_at if detail is not None else None
        try:
            result = await self._complete_cancellation(
                tenant_id, ends_at, EventSource.USER_ACTION, now
            )
            await self._commit()
        except Exception:
            await self._rollback()
            raise
        return result

    async def report_non_payment(
        self,
        tenant_id: UUID,
        next_billing_at: Optional[datetime] = None,
    ) -> CancelResult:
        """The provider reports non-payment or a cancellation made on its side."""

        try:
            result = await self._complete_cancellation(
                tenant_id,
                as_utc(next_billing_at),
                EventSource.EXTERNAL_NOTIFICATION,
                self.clock(),
            )
            await self._commit()
        except Exception:
            await self._rollback()
            raise
        return result

    async def expire(
        self,
        tenant_id: UUID,
        source: EventSource = EventSource.EXTERNAL_NOTIFICATION,
    ) -> Tenant:
        """``active``/``cancelled`` -> ``expired``; the tenant drops to the free tier."""

        now = self.clock()

        def plan(tenant: Tenant) -> Optional[TenantUpdate]:
            if tenant.subscription_status == SubscriptionStatus.EXPIRED:
                return None
            self._require(tenant, SubscriptionStatus.EXPIRED)
            return ExpireUpdate()

        try:
            tenant, applied = await self._transition(tenant_id, plan, source, now)
            if applied:
                await self.history.mark_latest(tenant_id, SubscriptionStatus.EXPIRED)
            await self._commit()
        except Exception:
            await self._rollback()
            raise
        return tenant

    async def record_payment(
        self, tenant_id: UUID, next_billing_at: Optional[datetime]
    ) -> Tenant:
        """A renewal payment went through: extend the paid period."""

        now = self.clock()
        next_billing_at = as_utc(next_billing_at)

        def plan(tenant: Tenant) -> Optional[TenantUpdate]:
            if next_billing_at is None:
                return None
            if tenant.subscription_status != SubscriptionStatus.ACTIVE:
                logger.info(
                    f"Ignoring payment for tenant {tenant.id} in status "
                    f"{tenant.subscription_status.value}"
                )
                return None
            current = as_utc(tenant.subscription_ends_at)
            if current is not None and next_billing_at <= current:
                return None
            return RenewUpdate(ends_at=next_billing_at)

        try:
            tenant, applied = await self._transition(
                tenant_id, plan, EventSource.EXTERNAL_NOTIFICATION, now
            )
            if applied:
                await self.history.mark_latest(
                    tenant_id, SubscriptionStatus.ACTIVE, expires_at=next_billing_at
                )
            await self._commit()
        except Exception:
            await self._rollback()
            raise
        return tenant

    async def _complete_cancellation(
        self,
        tenant_id: UUID,
        ends_at: Optional[datetime],
        source: EventSource,
        now: datetime,
    ) -> CancelResult:
        def plan(tenant: Tenant) -> Optional[TenantUpdate]:
            if tenant.subscription_status == SubscriptionStatus.CANCELLED:
                return None
            self._require(tenant, SubscriptionStatus.CANCELLED)
            return CancelUpdate(ends_at=ends_at)

        tenant, applied = await self._transition(tenant_id, plan, source, now)
        if applied:
            await self.history.mark_latest(
                tenant_id, SubscriptionStatus.CANCELLED, cancelled_at=now
            )
        return self._cancel_result(tenant, already_cancelled=not applied)

    async def _mark_cancel_pending(self, tenant_id: UUID, now: datetime) -> None:
        """Remember a cancellation the provider could not be told about yet."""

        marked = await self.tenants.update(
            tenant_id, PendingCancelUpdate(now), expected_status=SubscriptionStatus.ACTIVE
        )
        await self._commit()
        if marked:
            logger.warning(
                f"Provider unavailable while cancelling tenant {tenant_id}; "
                "will retry at the next reconciliation"
            )

    @staticmethod
    def _cancel_result(tenant: Tenant, already_cancelled: bool) -> CancelResult:
        return CancelResult(
            tenant_id=tenant.id,
            subscription_status=tenant.subscription_status,
            plan_tier=tenant.plan_tier,
            subscription_ends_at=as_utc(tenant.subscription_ends_at),
            already_cancelled=already_cancelled,
        )

    # ------------------------------------------------------------------
    # reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, now: Optional[datetime] = None) -> ReconciliationReport:
        """One scheduled sweep.

        * retry cancellations the provider could not be told about,
        * re-check active tenants whose paid period passed without a renewal,
        * expire cancelled tenants whose grace period has elapsed.

        Every tenant is handled in its own transaction. A tenant whose status
        changed under the sweep is skipped until the next cycle.
        """

        now = as_utc(now) or self.clock()
        report = ReconciliationReport()

        await self._retry_pending_cancellations(now, report)
        await self._recheck_overdue(now, report)
        await self._expire_elapsed(now, report)

        logger.info(f"Reconciliation finished: {report.model_dump()}")
        return report

    async def _retry_pending_cancellations(
        self, now: datetime, report: ReconciliationReport
    ) -> None:
        pending = [
            (tenant.id, tenant.external_subscription_id)
            for tenant in await self.tenants.list_pending_cancellations()
        ]
        await self._rollback()

        for tenant_id, external_id in pending:
            detail: Optional[ExternalSubscriptionDetail] = None
            try:
                if external_id:
                    try:
                        detail = await self.gateway.get_detail(external_id)
                    except GatewayError as exc:
                        logger.warning(
                            f"Could not read subscription {external_id} for tenant "
                            f"{tenant_id}; retrying the cancellation anyway: {exc.message}"
                        )
                        detail = None
                    if detail is None or detail.status not in PROVIDER_ENDED_STATUSES:
                        await self.gateway.cancel(
                            external_id, settings.billing.cancel_reason
                        )
            except GatewayUnavailable:
                report.gateway_failures += 1
                continue
            except GatewayRejected as exc:
                logger.error(
                    f"Provider rejected pending cancellation for tenant {tenant_id}: "
                    f"{exc.message}"
                )
                await self.tenants.update(
                    tenant_id,
                    PendingCancelUpdate(None),
                    expected_status=SubscriptionStatus.ACTIVE,
                )
                await self._commit()
                report.cancellations_rejected += 1
                continue

            ends_at = detail.next_billing_at if detail is not None else None
            try:
                result = await self._complete_cancellation(
                    tenant_id, ends_at, EventSource.SCHEDULED_RECONCILIATION, now
                )
                await self._commit()
            except (ConcurrentModification, InvalidTransition) as exc:
                await self._rollback()
                logger.warning(f"Skipping pending cancellation of {tenant_id}: {exc.message}")
                report.skipped_conflicts += 1
                continue
            if not result.already_cancelled:
                report.cancellations_completed += 1

    async def _recheck_overdue(self, now: datetime, report: ReconciliationReport) -> None:
        overdue = [
            (tenant.id, tenant.external_subscription_id, as_utc(tenant.subscription_ends_at))
            for tenant in await self.tenants.list_overdue_active(now)
        ]
        await self._rollback()

        for tenant_id, external_id, ends_at in overdue:
            try:
                detail = await self.gateway.get_detail(external_id)
            except GatewayUnavailable:
                report.gateway_failures += 1
                continue
            except GatewayRejected as exc:
                logger.warning(f"Could not re-check tenant {tenant_id}: {exc.message}")
                report.gateway_failures += 1
                continue

            if detail.status in PROVIDER_ENDED_STATUSES:
                fields: TenantUpdate = CancelUpdate(ends_at=detail.next_billing_at)
                history_status = SubscriptionStatus.CANCELLED
            elif (
                detail.status == PROVIDER_ACTIVE
                and detail.next_billing_at is not None
                and (ends_at is None or detail.next_billing_at > ends_at)
            ):
                fields = RenewUpdate(ends_at=detail.next_billing_at)
                history_status = SubscriptionStatus.ACTIVE
            else:
                continue

            tenant = await self._load(tenant_id)
            if tenant.subscription_status != SubscriptionStatus.ACTIVE or not await self._apply(
                tenant, fields, EventSource.SCHEDULED_RECONCILIATION, now
            ):
                await self._rollback()
                report.skipped_conflicts += 1
                continue

            if history_status == SubscriptionStatus.CANCELLED:
                await self.history.mark_latest(
                    tenant_id, SubscriptionStatus.CANCELLED, cancelled_at=now
                )
                report.cancelled_by_provider += 1
            else:
                await self.history.mark_latest(
                    tenant_id, SubscriptionStatus.ACTIVE, expires_at=detail.next_billing_at
                )
                report.renewed += 1
            await self._commit()

    async def _expire_elapsed(self, now: datetime, report: ReconciliationReport) -> None:
        candidates = [tenant.id for tenant in await self.tenants.list_grace_period_elapsed(now)]
        await self._rollback()

        for tenant_id in candidates:
            tenant = await self._load(tenant_id)
            if tenant.subscription_status != SubscriptionStatus.CANCELLED or not await self._apply(
                tenant, ExpireUpdate(), EventSource.SCHEDULED_RECONCILIATION, now
            ):
                await self._rollback()
                report.skipped_conflicts += 1
                continue
            await self.history.mark_latest(tenant_id, SubscriptionStatus.EXPIRED)
            await self._commit()
            report.expired += 1

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def describe(self, tenant_id: UUID) -> SubscriptionRead:
        tenant = await self._load(tenant_id)
        latest = await self.ledger.latest(tenant_id)
        return SubscriptionRead(
            tenant_id=tenant.id,
            plan_tier=tenant.plan_tier,
            subscription_status=tenant.subscription_status,
            subscription_started_at=as_utc(tenant.subscription_started_at),
            subscription_ends_at=as_utc(tenant.subscription_ends_at),
            has_external_subscription=tenant.external_subscription_id is not None,
            cancellation_pending=tenant.cancel_requested_at is not None,
            latest_event=LifecycleEventRead.model_validate(latest) if latest else None,
        )
