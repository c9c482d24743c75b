import hashlib
import hmac
import json
import time

import pytest


stripe = pytest.importorskip("stripe")

from core.settings import PaymentSettings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentSignatureError
from infrastructure.external.payments.stripe_client import StripeClient


def _settings() -> PaymentSettings:
    return PaymentSettings(stripe={"secret_key": "sk_test_123", "webhook_secret": "whsec_test"})


def _intent_event(event_type: str, **obj) -> bytes:
    intent = {"id": "pi_1", "object": "payment_intent", "amount": 2000, "payment_method_types": ["card"], **obj}
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": intent}}).encode()


@pytest.fixture
def accept_signature(monkeypatch):
    calls = []

    def _verify_header(payload, sig_header, secret, tolerance=None):
        calls.append((sig_header, secret, tolerance))
        return True

    monkeypatch.setattr(stripe.WebhookSignature, "verify_header", staticmethod(_verify_header))
    return calls


def test_stripe_parse_succeeded_intent(accept_signature):
    gw = get_payment_gateway("stripe", _settings())
    assert isinstance(gw, StripeClient)

    evt = gw.parse_webhook({"stripe-signature": "t=1,v1=abc"}, _intent_event("payment_intent.succeeded"))

    assert evt.type == "payment.captured"
    assert evt.provider == "stripe"
    assert evt.id == "evt_1"
    assert evt.gateway_order_id == "pi_1"
    assert evt.gateway_payment_id == "pi_1"
    assert evt.method == "card"
    assert accept_signature == [("t=1,v1=abc", "whsec_test", 300)]


def test_stripe_parse_failed_intent_carries_reason(accept_signature):
    gw = get_payment_gateway("stripe", _settings())
    body = _intent_event(
        "payment_intent.payment_failed",
        last_payment_error={"message": "Your card was declined.", "payment_method": {"card": {"brand": "visa", "last4": "0002"}}},
    )

    evt = gw.parse_webhook({"Stripe-Signature": "t=1,v1=abc"}, body)

    assert evt.type == "payment.failed"
    assert evt.error_description == "Your card was declined."
    assert evt.card_brand == "visa"
    assert evt.card_last4 == "0002"


def test_stripe_refund_only_counts_when_succeeded(accept_signature):
    gw = get_payment_gateway("stripe", _settings())
    refund = {"id": "re_1", "object": "refund", "payment_intent": "pi_1", "amount": 500}

    pending = json.dumps({"id": "evt_2", "type": "refund.created", "data": {"object": {**refund, "status": "pending"}}})
    evt = gw.parse_webhook({"Stripe-Signature": "sig"}, pending.encode())
    assert evt.type == "refund.created"

    done = json.dumps({"id": "evt_3", "type": "refund.updated", "data": {"object": {**refund, "status": "succeeded"}}})
    evt = gw.parse_webhook({"Stripe-Signature": "sig"}, done.encode())
    assert evt.type == "refund.processed"
    assert evt.gateway_refund_id == "re_1"
    assert evt.gateway_payment_id == "pi_1"
    assert evt.amount == 500


def test_stripe_invalid_signature(monkeypatch):
    def _reject(payload, sig_header, secret, tolerance=None):
        raise stripe.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr(stripe.WebhookSignature, "verify_header", staticmethod(_reject))
    gw = get_payment_gateway("stripe", _settings())

    with pytest.raises(PaymentSignatureError):
        gw.parse_webhook({"Stripe-Signature": "t=1,v1=abc"}, _intent_event("payment_intent.succeeded"))


def test_stripe_missing_signature_header():
    gw = get_payment_gateway("stripe", _settings())
    with pytest.raises(PaymentSignatureError):
        gw.parse_webhook({}, _intent_event("payment_intent.succeeded"))


def test_stripe_has_no_checkout_signature():
    gw = get_payment_gateway("stripe", _settings())
    assert gw.verify_checkout_signature("pi_1", "pi_1", "anything") is False


def _signed_header(payload: bytes, secret: str = "whsec_test") -> str:
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_stripe_accepts_real_signature():
    gw = get_payment_gateway("stripe", _settings())
    body = _intent_event("payment_intent.processing")

    evt = gw.parse_webhook({"Stripe-Signature": _signed_header(body)}, body)

    assert evt.type == "payment.processing"
    assert evt.gateway_order_id == "pi_1"


def test_stripe_rejects_tampered_body():
    gw = get_payment_gateway("stripe", _settings())
    body = _intent_event("payment_intent.succeeded")
    header = _signed_header(body)

    with pytest.raises(PaymentSignatureError):
        gw.parse_webhook({"Stripe-Signature": header}, body.replace(b"2000", b"2001"))


def test_stripe_malformed_json_with_valid_signature_is_provider_error():
    gw = get_payment_gateway("stripe", _settings())
    body = b'{"id": "evt_1", "type": '

    with pytest.raises(PaymentProviderError):
        gw.parse_webhook({"Stripe-Signature": _signed_header(body)}, body)


def test_stripe_canceled_intent_is_reported_as_failure(accept_signature):
    gw = get_payment_gateway("stripe", _settings())

    evt = gw.parse_webhook({"Stripe-Signature": "sig"}, _intent_event("payment_intent.canceled"))

    assert evt.type == "payment.failed"
    assert evt.gateway_payment_id == "pi_1"
