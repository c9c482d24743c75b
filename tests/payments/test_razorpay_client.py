import json
from types import SimpleNamespace

import pytest
import requests
from razorpay.errors import BadRequestError, ServerError

from application.services.webhook_verifier import compute_signature
from core.settings import PaymentSettings
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from infrastructure.external.payments.razorpay_client import RazorpayClient


WEBHOOK_SECRET = "whsec_unit"


def _settings(**razorpay) -> PaymentSettings:
    cfg = {"key_id": "rzp_test_key", "key_secret": "rzp_secret", "webhook_secret": WEBHOOK_SECRET}
    cfg.update(razorpay)
    return PaymentSettings(razorpay=cfg, retry={"max": 2, "base_backoff": 0.01})


class _FlakyCall:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _sdk(**resources):
    return SimpleNamespace(
        order=SimpleNamespace(create=resources.get("order_create"), payments=resources.get("order_payments")),
        payment=SimpleNamespace(fetch=resources.get("payment_fetch"), refund=resources.get("payment_refund")),
    )


@pytest.mark.asyncio
async def test_create_order_sends_auto_capture():
    create = _FlakyCall({"id": "order_1", "amount": 50000, "currency": "INR", "receipt": "r1", "status": "created"})
    client = RazorpayClient(_settings(), client=_sdk(order_create=create))

    order = await client.create_order(amount=50000, currency="INR", receipt="r1", notes={"customerEmail": "a@b.co"})

    assert order.id == "order_1"
    assert order.amount == 50000
    payload = create.calls[0][1]["data"]
    assert payload["payment_capture"] == 1
    assert payload["notes"] == {"customerEmail": "a@b.co"}


@pytest.mark.asyncio
async def test_create_order_is_not_retried():
    create = _FlakyCall(requests.exceptions.ConnectionError("reset"))
    client = RazorpayClient(_settings(), client=_sdk(order_create=create))

    with pytest.raises(PaymentRecoverableError):
        await client.create_order(amount=50000, currency="INR", receipt="r1")
    assert len(create.calls) == 1


@pytest.mark.asyncio
async def test_fetch_payment_retries_transport_errors():
    fetch = _FlakyCall(
        requests.exceptions.ConnectionError("reset"),
        {"id": "pay_1", "order_id": "order_1", "status": "captured", "amount": 500,
         "method": "card", "card": {"network": "Visa", "last4": "4242"}},
    )
    client = RazorpayClient(_settings(), client=_sdk(payment_fetch=fetch))

    payment = await client.fetch_payment("pay_1")

    assert len(fetch.calls) == 2
    assert payment.status == "captured"
    assert payment.card_brand == "Visa"
    assert payment.card_last4 == "4242"


@pytest.mark.asyncio
async def test_refund_errors_are_wrapped():
    refund = _FlakyCall(BadRequestError("The amount is invalid"))
    client = RazorpayClient(_settings(), client=_sdk(payment_refund=refund))

    with pytest.raises(PaymentProviderError) as info:
        await client.refund("pay_1", amount=100)
    assert "amount is invalid" in info.value.message

    client = RazorpayClient(_settings(), client=_sdk(payment_refund=_FlakyCall(ServerError("upstream"))))
    with pytest.raises(PaymentRecoverableError):
        await client.refund("pay_1", amount=100)


@pytest.mark.asyncio
async def test_missing_api_keys_fail_at_call_time():
    client = RazorpayClient(_settings(key_id=None, key_secret=None))
    assert client.key_id is None
    with pytest.raises(PaymentProviderError):
        await client.create_order(amount=50000, currency="INR", receipt="r1")


def test_checkout_signature_uses_key_secret():
    client = RazorpayClient(_settings(), client=_sdk())
    signature = compute_signature("order_1|pay_1", "rzp_secret")
    assert client.verify_checkout_signature("order_1", "pay_1", signature) is True
    assert client.verify_checkout_signature("order_1", "pay_1", compute_signature("order_1|pay_1", WEBHOOK_SECRET)) is False


def test_parse_webhook_payment_captured():
    body = json.dumps({
        "event": "payment.captured",
        "payload": {"payment": {"entity": {
            "id": "pay_1", "order_id": "order_1", "amount": 500, "method": "card",
            "card": {"network": "MasterCard", "last4": "1111"},
        }}},
    }).encode()
    headers = {"x-razorpay-signature": compute_signature(body, WEBHOOK_SECRET), "X-Razorpay-Event-Id": "evt_9"}

    event = RazorpayClient(_settings(), client=_sdk()).parse_webhook(headers, body)

    assert event.type == "payment.captured"
    assert event.id == "evt_9"
    assert event.gateway_order_id == "order_1"
    assert event.gateway_payment_id == "pay_1"
    assert event.card_brand == "MasterCard"
    assert event.card_last4 == "1111"


def test_parse_webhook_order_paid_reads_order_entity():
    body = json.dumps({"event": "order.paid", "payload": {"order": {"entity": {"id": "order_2"}}}}).encode()
    headers = {"X-Razorpay-Signature": compute_signature(body, WEBHOOK_SECRET)}

    event = RazorpayClient(_settings(), client=_sdk()).parse_webhook(headers, body)

    assert event.type == "order.paid"
    assert event.gateway_order_id == "order_2"


def test_parse_webhook_refund_processed():
    body = json.dumps({
        "event": "refund.processed",
        "payload": {"refund": {"entity": {"id": "rfnd_1", "payment_id": "pay_1", "amount": 200}}},
    }).encode()
    headers = {"X-Razorpay-Signature": compute_signature(body, WEBHOOK_SECRET)}

    event = RazorpayClient(_settings(), client=_sdk()).parse_webhook(headers, body)

    assert event.gateway_refund_id == "rfnd_1"
    assert event.gateway_payment_id == "pay_1"
    assert event.amount == 200


def test_parse_webhook_rejects_tampered_body():
    body = b'{"event":"payment.captured","payload":{}}'
    headers = {"X-Razorpay-Signature": compute_signature(body, WEBHOOK_SECRET)}
    client = RazorpayClient(_settings(), client=_sdk())

    with pytest.raises(PaymentSignatureError):
        client.parse_webhook(headers, body.replace(b"captured", b"failed"))


def test_parse_webhook_without_secret_rejects():
    body = b"{}"
    client = RazorpayClient(_settings(webhook_secret=None), client=_sdk())
    with pytest.raises(PaymentSignatureError):
        client.parse_webhook({"X-Razorpay-Signature": compute_signature(body, "guess")}, body)


def test_parse_webhook_malformed_json_after_valid_signature():
    body = b"not json"
    headers = {"X-Razorpay-Signature": compute_signature(body, WEBHOOK_SECRET)}
    with pytest.raises(PaymentProviderError):
        RazorpayClient(_settings(), client=_sdk()).parse_webhook(headers, body)
