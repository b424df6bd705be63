"""External subscription gateway: the narrow interface to the payment provider.

Failure mapping for every call:

* timeouts, transport errors and 5xx answers raise :class:`GatewayUnavailable`
  (callers retry at the next reconciliation);
* any other non-success answer raises :class:`GatewayRejected`.
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

import httpx
from pydantic import BaseModel

from quota_engine.core.clock import parse_instant
from quota_engine.core.config import settings
from quota_engine.core.exceptions import GatewayRejected, GatewayUnavailable


logger = logging.getLogger(__name__)

PROVIDER_ACTIVE = "ACTIVE"
PROVIDER_ENDED_STATUSES = frozenset({"CANCELLED", "SUSPENDED", "EXPIRED"})

WEBHOOK_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class ExternalSubscriptionDetail(BaseModel):
    """What the provider knows about one subscription."""

    external_id: str
    status: Optional[str] = None
    plan_id: Optional[str] = None
    next_billing_at: Optional[datetime] = None


class SubscriptionGateway(Protocol):
    async def get_detail(self, external_subscription_id: str) -> ExternalSubscriptionDetail:
        ...

    async def cancel(self, external_subscription_id: str, reason: str) -> None:
        ...


def detail_from_payload(payload: Mapping[str, Any]) -> ExternalSubscriptionDetail:
    """Build a detail from a PayPal subscription resource."""

    billing_info = payload.get("billing_info") or {}
    return ExternalSubscriptionDetail(
        external_id=str(payload.get("id") or payload.get("billing_agreement_id") or ""),
        status=payload.get("status"),
        plan_id=payload.get("plan_id"),
        next_billing_at=parse_instant(billing_info.get("next_billing_time")),
    )


class PayPalGateway:
    """PayPal Subscriptions REST API client."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        timeout: float = 10.0,
        webhook_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_id = webhook_id
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout)
        )
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls) -> "PayPalGateway":
        return cls(
            client_id=settings.paypal.client_id,
            client_secret=settings.paypal.client_secret,
            base_url=settings.paypal.base_url,
            timeout=settings.paypal.timeout_seconds,
            webhook_id=settings.paypal.webhook_id,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning(f"PayPal {method} {path} timed out")
            raise GatewayUnavailable("Payment provider timed out") from exc
        except httpx.TransportError as exc:
            logger.warning(f"PayPal {method} {path} transport error: {exc}")
            raise GatewayUnavailable("Payment provider unreachable") from exc

        if response.status_code >= 500:
            logger.warning(f"PayPal {method} {path} answered {response.status_code}")
            raise GatewayUnavailable(
                f"Payment provider error ({response.status_code})"
            )
        return response

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        response = await self._send(
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code != 200:
            raise GatewayRejected(
                "Payment provider rejected the API credentials",
                provider_status=response.status_code,
            )
        payload = response.json()
        self._token = payload["access_token"]
        # refresh a minute early
        self._token_expires_at = time.monotonic() + int(payload.get("expires_in", 0)) - 60
        return self._token

    async def _authorized(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self._access_token()
        headers = {"Authorization": f"Bearer {token}"}
        return await self._send(method, path, headers=headers, **kwargs)

    async def get_detail(self, external_subscription_id: str) -> ExternalSubscriptionDetail:
        response = await self._authorized(
            "GET", f"/v1/billing/subscriptions/{external_subscription_id}"
        )
        if response.status_code != 200:
            raise GatewayRejected(
                f"Subscription {external_subscription_id} lookup rejected",
                provider_status=response.status_code,
            )
        return detail_from_payload(response.json())

    async def cancel(self, external_subscription_id: str, reason: str) -> None:
        response = await self._authorized(
            "POST",
            f"/v1/billing/subscriptions/{external_subscription_id}/cancel",
            json={"reason": reason},
        )
        if response.status_code != 204:
            logger.error(
                f"PayPal refused to cancel {external_subscription_id}: "
                f"{response.status_code} {response.text}"
            )
            raise GatewayRejected(
                "Payment provider refused the cancellation",
                provider_status=response.status_code,
            )
        logger.info(f"PayPal subscription {external_subscription_id} cancelled")

    async def verify_webhook(self, headers: Mapping[str, str], body: bytes) -> bool:
        """Ask PayPal whether a webhook delivery is authentic."""

        lowered = {key.lower(): value for key, value in headers.items()}
        if not self.webhook_id:
            if settings.IS_PRODUCTION:
                logger.error("PayPal webhook id is not configured; rejecting delivery")
                return False
            logger.warning("PayPal webhook id not configured; skipping verification")
            return True

        fields = {name: lowered.get(header) for name, header in WEBHOOK_HEADERS.items()}
        if not all(fields.values()):
            logger.warning("PayPal webhook delivery missing verification headers")
            return False

        response = await self._authorized(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            json={
                **fields,
                "webhook_id": self.webhook_id,
                "webhook_event": json.loads(body),
            },
        )
        if response.status_code != 200:
            return False
        return response.json().get("verification_status") == "SUCCESS"


_gateway: Optional[PayPalGateway] = None


def get_gateway() -> PayPalGateway:
    """Create (or reuse) the gateway configured from settings."""

    global _gateway
    if _gateway is None:
        _gateway = PayPalGateway.from_settings()
    return _gateway


async def close_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
    _gateway = None
