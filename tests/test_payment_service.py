import asyncio
import json

import pytest

from application.dtos.payments import CreateOrderRequest, RefundRequest, VerifyPaymentRequest
from application.services.webhook_verifier import compute_signature
from domain.payment.service import (
    AmountOutOfRangeException,
    OrderNotFoundException,
    PaymentAlreadyRefundedException,
    PaymentNotRefundableException,
    RefundExceedsPaymentException,
)
from infrastructure.external.payments.exceptions import PaymentSignatureError

from conftest import WEBHOOK_SECRET, checkout_signature


def razorpay_webhook(event: str, order_id: str, payment_id: str, **entity) -> tuple[dict, bytes]:
    payment = {"id": payment_id, "order_id": order_id, "amount": 50000, "currency": "INR", **entity}
    body = json.dumps({"event": event, "payload": {"payment": {"entity": payment}}}).encode()
    return {"X-Razorpay-Signature": compute_signature(body, WEBHOOK_SECRET)}, body


def refund_webhook(refund_id: str, payment_id: str, amount: int) -> tuple[dict, bytes]:
    refund = {"id": refund_id, "payment_id": payment_id, "amount": amount}
    body = json.dumps({"event": "refund.processed", "payload": {"refund": {"entity": refund}}}).encode()
    return {"X-Razorpay-Signature": compute_signature(body, WEBHOOK_SECRET)}, body


async def _create(service, amount=50000):
    return await service.create_order(CreateOrderRequest(amount=amount, customer_email="buyer@example.com"))


async def _captured(service, amount=50000, payment_id="pay_1"):
    order = await _create(service, amount)
    headers, body = razorpay_webhook("payment.captured", order.order_id, payment_id, amount=amount)
    await service.handle_webhook(headers, body)
    return order


@pytest.mark.asyncio
async def test_create_order_echoes_amount_and_currency(service, gateway):
    order = await _create(service)

    assert order.order_id == "order_test1"
    assert order.amount == 50000
    assert order.currency == "INR"
    assert order.key_id == "rzp_test_key"
    assert order.receipt.startswith("receipt_")
    assert order.status == "CREATED"
    assert len(gateway.created_orders) == 1

    status = await service.get_order_status(order.order_id)
    assert status.order.status == "CREATED"
    assert [p.status for p in status.payments] == ["PENDING"]


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, 99, 100_000_000])
async def test_create_order_rejects_amount_out_of_bounds(service, gateway, amount):
    with pytest.raises(AmountOutOfRangeException):
        await _create(service, amount)
    assert gateway.created_orders == []


@pytest.mark.asyncio
async def test_captured_webhook_marks_success_and_paid(service, notifier):
    order = await _create(service)
    headers, body = razorpay_webhook(
        "payment.captured", order.order_id, "pay_1", method="card", card={"network": "Visa", "last4": "4242"}
    )

    ack = await service.handle_webhook(headers, body)

    assert ack.processed is True
    payment = await service.get_payment("pay_1")
    assert payment.status == "SUCCESS"
    assert payment.card_brand == "Visa"
    assert payment.card_last4 == "4242"
    status = await service.get_order_status(order.order_id)
    assert status.order.status == "PAID"
    assert notifier.success == [payment.id]


@pytest.mark.asyncio
async def test_duplicate_webhook_is_idempotent(service, notifier):
    order = await _create(service)
    headers, body = razorpay_webhook("payment.captured", order.order_id, "pay_1")

    await service.handle_webhook(headers, body)
    first = await service.get_payment("pay_1")
    await service.handle_webhook(headers, body)
    second = await service.get_payment("pay_1")

    assert second.status == first.status == "SUCCESS"
    assert second.refunded_amount == first.refunded_amount
    assert len(notifier.success) == 1


@pytest.mark.asyncio
async def test_failed_webhook_records_reason(service, notifier):
    order = await _create(service)
    headers, body = razorpay_webhook(
        "payment.failed", order.order_id, "pay_1", error_description="Card declined by issuer"
    )

    await service.handle_webhook(headers, body)

    payment = await service.get_payment("pay_1")
    assert payment.status == "FAILED"
    assert payment.failure_reason == "Card declined by issuer"
    assert (await service.get_order_status(order.order_id)).order.status == "FAILED"
    assert notifier.failure == [payment.id]


@pytest.mark.asyncio
async def test_failed_then_captured_notifies_success(service, notifier):
    order = await _create(service)
    await service.handle_webhook(*razorpay_webhook("payment.failed", order.order_id, "pay_1"))
    await service.handle_webhook(*razorpay_webhook("payment.captured", order.order_id, "pay_2"))

    payment = await service.get_payment("pay_2")
    assert payment.status == "SUCCESS"
    assert payment.failure_reason is None
    assert notifier.failure == [payment.id]
    assert notifier.success == [payment.id]


@pytest.mark.asyncio
async def test_late_failure_does_not_override_success(service, notifier):
    order = await _captured(service)
    await service.handle_webhook(*razorpay_webhook("payment.failed", order.order_id, "pay_1"))

    assert (await service.get_payment("pay_1")).status == "SUCCESS"
    assert notifier.failure == []


@pytest.mark.asyncio
async def test_authorized_webhook_marks_success_and_order_authorized(service, notifier):
    order = await _create(service)
    headers, body = razorpay_webhook(
        "payment.authorized", order.order_id, "pay_1", method="card", card={"network": "MasterCard", "last4": "5100"}
    )

    ack = await service.handle_webhook(headers, body)

    assert ack.processed is True
    payment = await service.get_payment("pay_1")
    assert payment.status == "SUCCESS"
    assert payment.card_brand == "MasterCard"
    assert payment.card_last4 == "5100"
    assert (await service.get_order_status(order.order_id)).order.status == "AUTHORIZED"
    assert notifier.success == [payment.id]


@pytest.mark.asyncio
async def test_capture_after_authorization_pays_order_without_second_email(service, notifier):
    order = await _create(service)
    await service.handle_webhook(*razorpay_webhook("payment.authorized", order.order_id, "pay_1"))
    await service.handle_webhook(*razorpay_webhook("payment.captured", order.order_id, "pay_1"))

    assert (await service.get_payment("pay_1")).status == "SUCCESS"
    assert (await service.get_order_status(order.order_id)).order.status == "PAID"
    assert len(notifier.success) == 1


@pytest.mark.asyncio
async def test_pending_payment_moves_to_requires_action_then_processing(service, notifier):
    order = await _create(service)

    await service.handle_webhook(*razorpay_webhook("payment.requires_action", order.order_id, "pay_1"))
    payment = await service.get_payment("pay_1")
    assert payment.status == "REQUIRES_ACTION"

    await service.handle_webhook(*razorpay_webhook("payment.processing", order.order_id, "pay_1"))
    payment = await service.get_payment("pay_1")
    assert payment.status == "PROCESSING"
    assert (await service.get_order_status(order.order_id)).order.status == "CREATED"
    assert notifier.success == notifier.failure == []


@pytest.mark.asyncio
async def test_processing_event_does_not_downgrade_success(service):
    order = await _captured(service)

    await service.handle_webhook(*razorpay_webhook("payment.processing", order.order_id, "pay_1"))
    await service.handle_webhook(*razorpay_webhook("payment.requires_action", order.order_id, "pay_1"))

    assert (await service.get_payment("pay_1")).status == "SUCCESS"


@pytest.mark.asyncio
async def test_unknown_event_is_acknowledged_without_changes(service):
    order = await _create(service)
    ack = await service.handle_webhook(*razorpay_webhook("payment.dispute.created", order.order_id, "pay_1"))

    assert ack.processed is False
    assert ack.event_type == "payment.dispute.created"
    status = await service.get_order_status(order.order_id)
    assert status.payments[0].status == "PENDING"


@pytest.mark.asyncio
async def test_webhook_for_unknown_order_is_logged_not_raised(service):
    ack = await service.handle_webhook(*razorpay_webhook("payment.captured", "order_missing", "pay_x"))
    assert ack.processed is False


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_raises(service):
    headers, body = razorpay_webhook("payment.captured", "order_1", "pay_1")
    headers["X-Razorpay-Signature"] = "0" * 64
    with pytest.raises(PaymentSignatureError):
        await service.handle_webhook(headers, body)


@pytest.mark.asyncio
async def test_verify_payment_reconciles_like_webhook(service, gateway, notifier):
    order = await _create(service)
    gateway.stage_payment("pay_1", order.order_id, amount=50000, method="upi")

    result = await service.verify_payment(VerifyPaymentRequest(
        order_id=order.order_id,
        payment_id="pay_1",
        signature=checkout_signature(order.order_id, "pay_1"),
    ))

    assert result.status == "SUCCESS"
    assert result.order_status == "PAID"
    assert result.payment_id == "pay_1"

    # the webhook arriving afterwards is a no-op
    await service.handle_webhook(*razorpay_webhook("payment.captured", order.order_id, "pay_1"))
    assert len(notifier.success) == 1


@pytest.mark.asyncio
async def test_verify_payment_rejects_bad_signature(service, gateway):
    order = await _create(service)
    gateway.stage_payment("pay_1", order.order_id)

    with pytest.raises(PaymentSignatureError):
        await service.verify_payment(VerifyPaymentRequest(
            order_id=order.order_id, payment_id="pay_1", signature="bad"
        ))
    status = await service.get_order_status(order.order_id)
    assert status.payments[0].status == "PENDING"


@pytest.mark.asyncio
async def test_verify_payment_unknown_order(service):
    with pytest.raises(OrderNotFoundException):
        await service.verify_payment(VerifyPaymentRequest(
            order_id="order_missing",
            payment_id="pay_1",
            signature=checkout_signature("order_missing", "pay_1"),
        ))


@pytest.mark.asyncio
async def test_confirm_payment_applies_remote_status(service, gateway):
    order = await _create(service)
    gateway.stage_payment("pay_1", order.order_id, status="failed", error_description="Insufficient funds")

    payment = await service.confirm_payment("pay_1")

    assert payment.status == "FAILED"
    assert payment.failure_reason == "Insufficient funds"


@pytest.mark.asyncio
async def test_partial_then_full_refund(service, gateway):
    await _captured(service, amount=500)

    first = await service.refund(RefundRequest(payment_id="pay_1", refund_amount=100))
    assert first.success is True
    assert first.status == "PARTIALLY_REFUNDED"
    payment = await service.get_payment("pay_1")
    assert payment.refunded_amount == 100
    assert payment.refunded is False

    second = await service.refund(RefundRequest(payment_id="pay_1", refund_amount=400))
    assert second.status == "REFUNDED"
    payment = await service.get_payment("pay_1")
    assert payment.refunded_amount == 500
    assert payment.refunded is True

    with pytest.raises(PaymentAlreadyRefundedException):
        await service.refund(RefundRequest(payment_id="pay_1", refund_amount=1))
    assert gateway.refund_calls == [("pay_1", 100), ("pay_1", 400)]


@pytest.mark.asyncio
async def test_refund_over_limit_rejected_before_gateway(service, gateway):
    await _captured(service, amount=500)

    with pytest.raises(RefundExceedsPaymentException):
        await service.refund(RefundRequest(payment_id="pay_1", refund_amount=501))

    assert gateway.refund_calls == []
    assert (await service.get_payment("pay_1")).refunded_amount == 0


@pytest.mark.asyncio
async def test_refund_requires_successful_payment(service, gateway):
    order = await _create(service)
    await service.handle_webhook(*razorpay_webhook("payment.failed", order.order_id, "pay_1"))

    with pytest.raises(PaymentNotRefundableException):
        await service.refund(RefundRequest(payment_id="pay_1", refund_amount=100))

    assert gateway.refund_calls == []
    payment = await service.get_payment("pay_1")
    assert payment.status == "FAILED"
    assert payment.refunded_amount == 0


@pytest.mark.asyncio
async def test_refund_webhook_deduplicated_by_refund_id(service):
    await _captured(service, amount=500)
    headers, body = refund_webhook("rfnd_1", "pay_1", 200)

    await service.handle_webhook(headers, body)
    await service.handle_webhook(headers, body)

    payment = await service.get_payment("pay_1")
    assert payment.refunded_amount == 200
    assert payment.status == "PARTIALLY_REFUNDED"


@pytest.mark.asyncio
async def test_refund_webhook_after_api_refund_is_not_double_counted(service):
    await _captured(service, amount=500)
    result = await service.refund(RefundRequest(payment_id="pay_1", refund_amount=100))

    await service.handle_webhook(*refund_webhook(result.refund_id, "pay_1", 100))

    assert (await service.get_payment("pay_1")).refunded_amount == 100


@pytest.mark.asyncio
async def test_concurrent_refunds_are_both_applied(service, gateway, monkeypatch):
    await _captured(service, amount=500)
    gateway_refund = gateway.refund

    async def slow_refund(payment_id, *, amount, notes=None):
        await asyncio.sleep(0.05)
        return await gateway_refund(payment_id, amount=amount, notes=notes)

    monkeypatch.setattr(gateway, "refund", slow_refund)

    results = await asyncio.gather(
        service.refund(RefundRequest(payment_id="pay_1", refund_amount=100)),
        service.refund(RefundRequest(payment_id="pay_1", refund_amount=100)),
    )

    assert sorted(r.refund_id for r in results) == ["rfnd_test1", "rfnd_test2"]
    payment = await service.get_payment("pay_1")
    assert payment.refunded_amount == 200
    assert payment.status == "PARTIALLY_REFUNDED"


@pytest.mark.asyncio
async def test_refund_webhook_before_api_commit_is_recorded_once(service, gateway, monkeypatch):
    await _captured(service, amount=500)
    gateway_refund = gateway.refund

    async def refund_with_early_webhook(payment_id, *, amount, notes=None):
        remote = await gateway_refund(payment_id, amount=amount, notes=notes)
        await service.handle_webhook(*refund_webhook(remote.id, payment_id, amount))
        return remote

    monkeypatch.setattr(gateway, "refund", refund_with_early_webhook)

    result = await service.refund(RefundRequest(payment_id="pay_1", refund_amount=100))

    assert result.success is True
    assert result.refund_id == "rfnd_test1"
    payment = await service.get_payment("pay_1")
    assert payment.refunded_amount == 100
    assert payment.status == "PARTIALLY_REFUNDED"


@pytest.mark.asyncio
async def test_refunded_amount_increment_never_exceeds_payment(service, uow_factory):
    await _captured(service, amount=500)
    payment = await service.get_payment("pay_1")

    async with uow_factory() as uow:
        updated = await uow.payment_repository.add_refunded_amount(payment.id, 300)
        assert updated.refunded_amount == 300
        assert await uow.payment_repository.add_refunded_amount(payment.id, 201) is None
        updated = await uow.payment_repository.add_refunded_amount(payment.id, 200)
        assert updated.status.value == "REFUNDED"
        assert updated.refunded is True

    assert (await service.get_payment("pay_1")).refunded_amount == 500


@pytest.mark.asyncio
async def test_stats_and_listing(service):
    await _captured(service, amount=1000, payment_id="pay_1")
    await _captured(service, amount=3000, payment_id="pay_2")
    failed = await _create(service, amount=2000)
    await service.handle_webhook(*razorpay_webhook("payment.failed", failed.order_id, "pay_3"))
    await _create(service, amount=700)

    stats = await service.get_stats()
    assert stats.successful_payments == 2
    assert stats.failed_payments == 1
    assert stats.total_payments == 4
    assert stats.total_revenue == 4000
    assert stats.success_rate == 50.0
    assert stats.average_transaction_amount == 2000.0

    items, total = await service.list_payments(page=0, size=3)
    assert total == 4
    assert len(items) == 3
    items, _ = await service.list_payments(page=1, size=3)
    assert len(items) == 1

    items, total = await service.list_by_customer("buyer@example.com", page=0, size=10)
    assert total == 4
    items, total = await service.list_by_customer("nobody@example.com", page=0, size=10)
    assert (items, total) == ([], 0)


@pytest.mark.asyncio
async def test_stats_on_empty_store(service):
    stats = await service.get_stats()
    assert stats.total_payments == 0
    assert stats.success_rate == 0.0
    assert stats.average_transaction_amount == 0.0


@pytest.mark.asyncio
async def test_send_pending_emails_requeues_unsent(service, notifier, uow_factory):
    await _captured(service, payment_id="pay_1")
    failed = await _create(service)
    await service.handle_webhook(*razorpay_webhook("payment.failed", failed.order_id, "pay_2"))
    notifier.success.clear()
    notifier.failure.clear()

    sent = await service.get_payment("pay_1")
    async with uow_factory() as uow:
        assert await uow.payment_repository.claim_email(sent.id) is True

    dispatched = await service.send_pending_emails()

    failed_payment = await service.get_payment("pay_2")
    assert dispatched == 1
    assert notifier.success == []
    assert notifier.failure == [failed_payment.id]


@pytest.mark.asyncio
async def test_sync_order_status_heals_missed_webhook(service, gateway, notifier):
    order = await _create(service)
    gateway.stage_payment("pay_1", order.order_id, status="captured")

    applied = await service.sync_order_status(order.order_id)

    assert applied == 1
    assert (await service.get_order_status(order.order_id)).order.status == "PAID"
    assert len(notifier.success) == 1
