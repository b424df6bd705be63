"""Translate PayPal webhook events into lifecycle transitions."""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional
from uuid import UUID

from quota_engine.core.clock import parse_instant
from quota_engine.core.enums import EventSource
from quota_engine.core.exceptions import GatewayError, InvalidTransition, TenantNotFound
from quota_engine.repositories.tenant_repo import TenantRepo
from quota_engine.services.lifecycle import SubscriptionLifecycleManager


logger = logging.getLogger(__name__)

ACTIVATION_EVENTS = frozenset(
    {"BILLING.SUBSCRIPTION.CREATED", "BILLING.SUBSCRIPTION.ACTIVATED"}
)
CANCELLATION_EVENTS = frozenset({"BILLING.SUBSCRIPTION.CANCELLED"})
EXPIRY_EVENTS = frozenset({"BILLING.SUBSCRIPTION.EXPIRED"})
NON_PAYMENT_EVENTS = frozenset(
    {
        "BILLING.SUBSCRIPTION.SUSPENDED",
        "BILLING.SUBSCRIPTION.PAYMENT.FAILED",
        "PAYMENT.SALE.DENIED",
    }
)
PAYMENT_EVENTS = frozenset(
    {"PAYMENT.SALE.COMPLETED", "BILLING.SUBSCRIPTION.PAYMENT.SUCCEEDED"}
)


def _subscription_id(resource: Mapping[str, Any]) -> Optional[str]:
    return resource.get("billing_agreement_id") or resource.get("id")


def _next_billing(resource: Mapping[str, Any]) -> Optional[datetime]:
    billing_info = resource.get("billing_info") or {}
    return parse_instant(billing_info.get("next_billing_time"))


def _amount(resource: Mapping[str, Any]) -> Optional[Decimal]:
    amount = resource.get("amount") or {}
    raw = amount.get("total") or amount.get("value")
    if raw is None:
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        return None


class NotificationProcessor:
    """Apply one provider event to the tenant it concerns.

    Every event is acknowledged: unknown types, unknown subscriptions and
    transitions the tenant's state does not allow are logged and ignored.
    Returns the name of the action taken, or ``"ignored"``.
    """

    def __init__(self, manager: SubscriptionLifecycleManager) -> None:
        self.manager = manager
        self.tenants = TenantRepo(manager.session)

    async def _tenant_id(
        self,
        event_type: str,
        resource: Mapping[str, Any],
        subscription_id: Optional[str],
    ) -> Optional[UUID]:
        if subscription_id:
            tenant = await self.tenants.get_by_external_id(subscription_id)
            if tenant is not None:
                return tenant.id
        # custom_id only identifies the tenant of a checkout; later events
        # must match the tenant's current subscription
        if event_type not in ACTIVATION_EVENTS:
            return None
        custom_id = resource.get("custom_id")
        if not custom_id:
            return None
        try:
            return UUID(str(custom_id))
        except ValueError:
            logger.warning(f"Webhook custom_id {custom_id!r} is not a tenant id")
            return None

    async def _provider_next_billing(self, subscription_id: str) -> Optional[datetime]:
        # sale events carry no billing info; ask the provider
        try:
            detail = await self.manager.gateway.get_detail(subscription_id)
        except GatewayError as exc:
            logger.warning(
                f"Could not read next billing time of {subscription_id}: {exc.message}"
            )
            return None
        return detail.next_billing_at

    async def process(self, event: Mapping[str, Any]) -> str:
        event_type = event.get("event_type") or ""
        resource = event.get("resource") or {}
        subscription_id = _subscription_id(resource)
        logger.info(f"PayPal event {event_type} for subscription {subscription_id}")

        if event_type not in (
            ACTIVATION_EVENTS
            | CANCELLATION_EVENTS
            | EXPIRY_EVENTS
            | NON_PAYMENT_EVENTS
            | PAYMENT_EVENTS
        ):
            logger.info(f"Ignoring unhandled PayPal event {event_type}")
            return "ignored"

        tenant_id = await self._tenant_id(event_type, resource, subscription_id)
        if tenant_id is None:
            logger.warning(
                f"No tenant for PayPal subscription {subscription_id} ({event_type})"
            )
            return "ignored"

        try:
            if event_type in ACTIVATION_EVENTS:
                await self.manager.activate(
                    tenant_id,
                    subscription_id,
                    _next_billing(resource),
                    source=EventSource.EXTERNAL_NOTIFICATION,
                    amount=_amount(resource),
                )
                return "activated"
            if event_type in CANCELLATION_EVENTS or event_type in NON_PAYMENT_EVENTS:
                await self.manager.report_non_payment(tenant_id, _next_billing(resource))
                return "cancelled"
            if event_type in EXPIRY_EVENTS:
                await self.manager.expire(tenant_id, source=EventSource.EXTERNAL_NOTIFICATION)
                return "expired"
            next_billing_at = _next_billing(resource)
            if next_billing_at is None and subscription_id:
                next_billing_at = await self._provider_next_billing(subscription_id)
            await self.manager.record_payment(tenant_id, next_billing_at)
            return "payment_recorded"
        except (InvalidTransition, TenantNotFound) as exc:
            logger.warning(f"Ignoring PayPal event {event_type}: {exc.message}")
            return "ignored"
