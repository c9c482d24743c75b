import json

import pytest

from application.services.webhook_verifier import compute_signature

from conftest import WEBHOOK_SECRET, checkout_signature


API = "/api/v1/payments"


def _signed(payload: dict) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode()
    return body, {
        "Content-Type": "application/json",
        "X-Razorpay-Signature": compute_signature(body, WEBHOOK_SECRET),
    }


def _captured_event(order_id: str, payment_id: str = "pay_1") -> dict:
    return {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id, "amount": 50000}}},
    }


async def _create_order(client, amount=50000) -> dict:
    resp = await client.post(f"{API}/create", json={"amount": amount, "customerEmail": "buyer@example.com"})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def test_payment_routes_registered():
    from main import app

    routes = {r.path for r in app.routes}
    for path in (
        f"{API}/create",
        f"{API}/create-order",
        f"{API}/verify",
        f"{API}/refund",
        f"{API}/webhook",
        f"{API}/webhooks/{{provider}}",
        f"{API}/status/{{order_id}}",
        f"{API}/stats",
        f"{API}/key",
        f"{API}/health",
        f"{API}/{{payment_id}}",
    ):
        assert path in routes


@pytest.mark.asyncio
async def test_create_order_returns_camel_case(client):
    data = await _create_order(client)

    assert data["orderId"] == "order_test1"
    assert data["amount"] == 50000
    assert data["currency"] == "INR"
    assert data["keyId"] == "rzp_test_key"


@pytest.mark.asyncio
async def test_create_order_alias_accepts_snake_case(client):
    resp = await client.post(
        f"{API}/create-order",
        json={"amount": 1500, "currency": "usd", "customer_email": "buyer@example.com"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["currency"] == "USD"


@pytest.mark.asyncio
async def test_create_order_validation_errors_are_400(client):
    resp = await client.post(f"{API}/create", json={"amount": 50000, "customerEmail": "not-an-email"})
    assert resp.status_code == 400

    resp = await client.post(f"{API}/create", json={"amount": 10, "customerEmail": "buyer@example.com"})
    assert resp.status_code == 400
    assert resp.json()["error"]["field"] == "amount"


@pytest.mark.asyncio
async def test_webhook_invalid_signature_is_400(client):
    body = json.dumps(_captured_event("order_test1")).encode()
    resp = await client.post(
        f"{API}/webhook",
        content=body,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": "f" * 64},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_missing_signature_is_400(client):
    resp = await client.post(f"{API}/webhook", content=b"{}", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_unknown_event_is_200(client):
    body, headers = _signed({"event": "settlement.processed", "payload": {}})
    resp = await client.post(f"{API}/webhook", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["data"] == {"received": True, "eventType": "settlement.processed", "processed": False}


@pytest.mark.asyncio
async def test_webhook_captured_updates_status(client, notifier):
    order = await _create_order(client)
    body, headers = _signed(_captured_event(order["orderId"]))

    resp = await client.post(f"{API}/webhook", content=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["processed"] is True

    status = (await client.get(f"{API}/status/{order['orderId']}")).json()["data"]
    assert status["order"]["status"] == "PAID"
    assert status["payments"][0]["status"] == "SUCCESS"
    assert status["payments"][0]["gatewayPaymentId"] == "pay_1"
    assert len(notifier.success) == 1


@pytest.mark.asyncio
async def test_provider_webhook_route_uses_path_provider(client):
    order = await _create_order(client)
    body, headers = _signed(_captured_event(order["orderId"]))

    resp = await client.post(f"{API}/webhooks/razorpay", content=body, headers=headers)
    assert resp.status_code == 200

    resp = await client.post(f"{API}/webhooks/paypal", content=body, headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_verify_and_refund_flow(client, gateway):
    order = await _create_order(client, amount=500)
    gateway.stage_payment("pay_1", order["orderId"], amount=500)

    resp = await client.post(f"{API}/verify", json={
        "orderId": order["orderId"],
        "paymentId": "pay_1",
        "signature": checkout_signature(order["orderId"], "pay_1"),
    })
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "SUCCESS"
    assert resp.json()["data"]["orderStatus"] == "PAID"

    resp = await client.post(f"{API}/refund", json={"paymentId": "pay_1", "refundAmount": 100})
    assert resp.status_code == 200
    assert resp.json()["data"]["success"] is True
    assert resp.json()["data"]["status"] == "PARTIALLY_REFUNDED"

    resp = await client.post(f"{API}/refund", json={"paymentId": "pay_1", "refundAmount": 401})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_verify_bad_signature_is_400(client, gateway):
    order = await _create_order(client)
    gateway.stage_payment("pay_1", order["orderId"])

    resp = await client.post(f"{API}/verify", json={
        "orderId": order["orderId"], "paymentId": "pay_1", "signature": "0" * 64,
    })
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_not_found_lookups_are_404(client):
    assert (await client.get(f"{API}/pay_missing")).status_code == 404
    assert (await client.get(f"{API}/status/order_missing")).status_code == 404
    resp = await client.post(f"{API}/refund", json={"paymentId": "pay_missing", "refundAmount": 100})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_listing_is_paginated(client):
    for _ in range(3):
        await _create_order(client)

    data = (await client.get(f"{API}/", params={"page": 0, "size": 2})).json()["data"]
    assert data["total"] == 3
    assert data["pages"] == 2
    assert len(data["items"]) == 2

    data = (await client.get(f"{API}/customer/buyer@example.com", params={"page": 1, "size": 2})).json()["data"]
    assert len(data["items"]) == 1


@pytest.mark.asyncio
async def test_stats_key_and_health(client):
    stats = (await client.get(f"{API}/stats")).json()["data"]
    assert stats["totalPayments"] == 0
    assert stats["successRate"] == 0.0

    key = (await client.get(f"{API}/key")).json()["data"]
    assert key == {"provider": "razorpay", "keyId": "rzp_test_key"}

    health = (await client.get(f"{API}/health")).json()
    assert health["status"] == "UP"
    assert health["service"] == "payment-gateway"

    assert (await client.get("/health")).status_code == 200


@pytest.mark.asyncio
async def test_admin_endpoints(client, dispatcher, notifier):
    order = await _create_order(client)
    body, headers = _signed(_captured_event(order["orderId"]))
    await client.post(f"{API}/webhook", content=body, headers=headers)

    resp = await client.post(f"{API}/admin/send-pending-emails")
    assert resp.status_code == 200
    # fake notifier never marks the email as sent, so the payment is still pending
    assert resp.json()["data"]["dispatched"] == 1

    resp = await client.post(f"{API}/admin/sync/{order['orderId']}")
    assert resp.status_code == 200
    assert dispatcher.synced == [(order["orderId"], None)]
