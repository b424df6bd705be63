from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from quota_engine.core.config import settings
from quota_engine.core.exceptions import GatewayRejected, GatewayUnavailable
from quota_engine.services.gateway import PayPalGateway, detail_from_payload


BASE_URL = "https://paypal.test"


def _gateway(handler, webhook_id=None) -> PayPalGateway:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return PayPalGateway(
        client_id="client",
        client_secret="secret",
        base_url=BASE_URL,
        webhook_id=webhook_id,
        http_client=client,
    )


def _token_response() -> httpx.Response:
    return httpx.Response(200, json={"access_token": "token-1", "expires_in": 3600})


SUBSCRIPTION = {
    "id": "I-SUB1",
    "status": "ACTIVE",
    "plan_id": "P-PRO",
    "billing_info": {"next_billing_time": "2025-03-01T10:00:00Z"},
}


def test_detail_from_payload_reads_next_billing_time():
    detail = detail_from_payload(SUBSCRIPTION)

    assert detail.external_id == "I-SUB1"
    assert detail.status == "ACTIVE"
    assert detail.plan_id == "P-PRO"
    assert detail.next_billing_at == datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


def test_detail_without_billing_info():
    detail = detail_from_payload({"id": "I-SUB1", "status": "CANCELLED"})

    assert detail.next_billing_at is None


@pytest.mark.asyncio
async def test_get_detail_authenticates_and_parses():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, request.headers.get("authorization")))
        if request.url.path == "/v1/oauth2/token":
            return _token_response()
        return httpx.Response(200, json=SUBSCRIPTION)

    gateway = _gateway(handler)
    detail = await gateway.get_detail("I-SUB1")
    await gateway.get_detail("I-SUB1")
    await gateway.aclose()

    assert detail.next_billing_at == datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)
    # the token is fetched once and reused
    assert [path for _, path, _ in seen].count("/v1/oauth2/token") == 1
    assert seen[1] == ("GET", "/v1/billing/subscriptions/I-SUB1", "Bearer token-1")


@pytest.mark.asyncio
async def test_cancel_sends_reason_and_expects_no_content():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth2/token":
            return _token_response()
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    gateway = _gateway(handler)
    await gateway.cancel("I-SUB1", "Customer request")
    await gateway.aclose()

    assert bodies == [{"reason": "Customer request"}]


@pytest.mark.asyncio
async def test_business_rejection_maps_to_gateway_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth2/token":
            return _token_response()
        return httpx.Response(422, json={"name": "SUBSCRIPTION_STATUS_INVALID"})

    gateway = _gateway(handler)
    with pytest.raises(GatewayRejected) as exc_info:
        await gateway.cancel("I-SUB1", "Customer request")
    await gateway.aclose()

    assert exc_info.value.provider_status == 422


@pytest.mark.asyncio
async def test_server_errors_map_to_gateway_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth2/token":
            return _token_response()
        return httpx.Response(503)

    gateway = _gateway(handler)
    with pytest.raises(GatewayUnavailable):
        await gateway.get_detail("I-SUB1")
    await gateway.aclose()


@pytest.mark.asyncio
async def test_timeouts_map_to_gateway_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    gateway = _gateway(handler)
    with pytest.raises(GatewayUnavailable):
        await gateway.get_detail("I-SUB1")
    await gateway.aclose()


@pytest.mark.asyncio
async def test_bad_credentials_are_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid_client"})

    gateway = _gateway(handler)
    with pytest.raises(GatewayRejected):
        await gateway.get_detail("I-SUB1")
    await gateway.aclose()


@pytest.mark.asyncio
async def test_verify_webhook_posts_headers_and_event():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth2/token":
            return _token_response()
        captured.update(json.loads(request.content))
        return httpx.Response(200, json={"verification_status": "SUCCESS"})

    headers = {
        "PAYPAL-AUTH-ALGO": "SHA256withRSA",
        "PAYPAL-CERT-URL": "https://api.paypal.com/cert",
        "PAYPAL-TRANSMISSION-ID": "tx-1",
        "PAYPAL-TRANSMISSION-SIG": "sig",
        "PAYPAL-TRANSMISSION-TIME": "2025-02-01T12:00:00Z",
    }
    body = json.dumps({"id": "WH-1", "event_type": "BILLING.SUBSCRIPTION.CANCELLED"}).encode()

    gateway = _gateway(handler, webhook_id="WH-CONFIG")
    assert await gateway.verify_webhook(headers, body)
    await gateway.aclose()

    assert captured["webhook_id"] == "WH-CONFIG"
    assert captured["transmission_id"] == "tx-1"
    assert captured["webhook_event"]["id"] == "WH-1"


@pytest.mark.asyncio
async def test_verify_webhook_rejects_missing_headers():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no call expected")

    gateway = _gateway(handler, webhook_id="WH-CONFIG")
    assert not await gateway.verify_webhook({}, b"{}")
    await gateway.aclose()


@pytest.mark.asyncio
async def test_verification_without_webhook_id_depends_on_environment(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no call expected")

    gateway = _gateway(handler)
    assert await gateway.verify_webhook({}, b"{}")

    monkeypatch.setattr(settings, "ENV", "production")
    assert not await gateway.verify_webhook({}, b"{}")
    await gateway.aclose()
