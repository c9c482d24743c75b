from application.dtos.payments import GatewayPayment
from application.services.payment_service import event_from_gateway_payment
from core.settings import PaymentSettings
from infrastructure.external.payments.base import BasePaymentClient


class _MapClient(BasePaymentClient):
    provider = "stripe"


class _RazorpayMapClient(BasePaymentClient):
    provider = "razorpay"


def test_provider_status_mapping():
    c = _MapClient(PaymentSettings())
    assert c._map_status("succeeded") == "captured"
    assert c._map_status("processing") == "processing"
    assert c._map_status("requires_action") == "requires_action"
    assert c._map_status("requires_capture") == "authorized"
    assert c._map_status("canceled") == "failed"
    assert c._map_status("requires_payment_method") == "created"


def test_unknown_status_passes_through():
    c = _RazorpayMapClient(PaymentSettings())
    assert c._map_status("captured") == "captured"
    assert c._map_status("something_new") == "something_new"


def test_event_from_gateway_payment():
    remote = GatewayPayment(id="pay_1", order_id="order_1", status="captured", amount=500, card_last4="1111")
    event = event_from_gateway_payment("razorpay", remote)
    assert event.type == "payment.captured"
    assert event.gateway_order_id == "order_1"
    assert event.gateway_payment_id == "pay_1"
    assert event.card_last4 == "1111"


def test_event_from_gateway_payment_uses_fallback_order():
    remote = GatewayPayment(id="pi_1", status="failed", error_description="declined")
    event = event_from_gateway_payment("stripe", remote, fallback_order_id="pi_1")
    assert event.type == "payment.failed"
    assert event.gateway_order_id == "pi_1"
    assert event.error_description == "declined"


def test_statuses_without_transition_yield_no_event():
    for status in ("created", "refunded"):
        remote = GatewayPayment(id="pay_1", order_id="order_1", status=status)
        assert event_from_gateway_payment("razorpay", remote) is None
