"""
Application service orchestrating payment use-cases.

This class depends only on the application ports (PaymentGateway,
PaymentNotifier), the domain layer and DTOs. Gateway and notifier
implementations are provided by infrastructure and must be injected from the
composition root (API/tasks), keeping dependencies one-way.

Webhooks and synchronous confirmation (verify/confirm) both feed a
`GatewayEvent` into the domain `PaymentReconciler`, so whichever arrives first
wins and the other becomes an idempotent re-application. Notification events
raised during reconciliation are dispatched only after the transaction commits.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Iterable, Optional

from application.dtos.payments import (
    CreateOrderRequest,
    CreateOrderResponse,
    GatewayPayment,
    KeyDTO,
    OrderDTO,
    OrderStatusDTO,
    PaymentDTO,
    PaymentStatsDTO,
    RefundRequest,
    RefundResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAck,
)
from application.ports.notifier import PaymentNotifier
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.common.exceptions import DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Order, Payment, PaymentStatus
from domain.payment.events import GatewayEvent, PaymentFailed, PaymentSucceeded
from domain.payment.reconciler import PaymentReconciler
from domain.payment.service import (
    OrderNotFoundException,
    PaymentDomainService,
    PaymentNotFoundException,
)
from infrastructure.external.payments.exceptions import PaymentSignatureError
from shared.codes.payment_codes import STATUS_TO_EVENT


logger = get_logger(__name__)

DEFAULT_REFUND_REASON = "REQUESTED_BY_CUSTOMER"


def _to_payment_dto(payment: Payment) -> PaymentDTO:
    return PaymentDTO(
        id=payment.id,
        provider=payment.provider,
        gateway_payment_id=payment.gateway_payment_id,
        gateway_order_id=payment.gateway_order_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status.value,
        customer_email=payment.customer_email,
        description=payment.description,
        failure_reason=payment.failure_reason,
        payment_method_type=payment.payment_method_type,
        card_brand=payment.card_brand,
        card_last4=payment.card_last4,
        refunded=payment.refunded,
        refunded_amount=payment.refunded_amount,
        email_sent=payment.email_sent,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
    )


def _to_order_dto(order: Order) -> OrderDTO:
    return OrderDTO(
        id=order.id,
        provider=order.provider,
        gateway_order_id=order.gateway_order_id,
        amount=order.amount,
        currency=order.currency,
        receipt=order.receipt,
        status=order.status.value,
        customer_email=order.customer_email,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        description=order.description,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def event_from_gateway_payment(
    provider: str,
    remote: GatewayPayment,
    *,
    fallback_order_id: Optional[str] = None,
) -> Optional[GatewayEvent]:
    """Translate a fetched gateway payment into the event the reconciler understands.

    Returns None for statuses that carry no local transition (created, refunded).
    """
    event_type = STATUS_TO_EVENT.get(remote.status)
    if event_type is None:
        return None
    return GatewayEvent(
        type=event_type,
        provider=provider,
        gateway_order_id=remote.order_id or fallback_order_id,
        gateway_payment_id=remote.id,
        amount=remote.amount,
        method=remote.method,
        card_brand=remote.card_brand,
        card_last4=remote.card_last4,
        error_description=remote.error_description,
        raw=remote.raw,
    )


class PaymentApplicationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        notifier: PaymentNotifier,
        settings: PaymentSettings,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.notifier = notifier
        self.settings = settings

    # ---- order creation ----

    def _default_currency(self) -> str:
        provider_cfg = getattr(self.settings, self.gateway.provider, None)
        return getattr(provider_cfg, "currency", None) or "INR"

    async def create_order(self, req: CreateOrderRequest) -> CreateOrderResponse:
        limits = self.settings.limits
        PaymentDomainService.validate_amount(req.amount, limits.min_amount, limits.max_amount)

        currency = req.currency or self._default_currency()
        receipt = f"receipt_{int(time.time() * 1000)}"
        notes = {
            "customerEmail": str(req.customer_email),
            "description": req.description or "",
        }
        logger.info(
            "payment_create_order_request",
            provider=self.gateway.provider,
            amount=req.amount,
            currency=currency,
            receipt=receipt,
        )
        remote = await self.gateway.create_order(
            amount=req.amount,
            currency=currency,
            receipt=receipt,
            notes=notes,
        )

        async with self._uow_factory() as uow:
            domain_service = PaymentDomainService(
                uow.order_repository, uow.payment_repository, uow.refund_repository
            )
            order, payment = await domain_service.create_records(
                provider=self.gateway.provider,
                gateway_order_id=remote.id,
                amount=req.amount,
                currency=currency,
                receipt=receipt,
                customer_email=str(req.customer_email),
                customer_name=req.customer_name,
                customer_phone=req.customer_phone,
                description=req.description,
            )

        logger.info(
            "payment_order_created",
            provider=self.gateway.provider,
            gateway_order_id=remote.id,
            payment_id=payment.id,
        )
        return CreateOrderResponse(
            order_id=remote.id,
            amount=order.amount,
            currency=order.currency,
            key_id=self.gateway.key_id,
            receipt=receipt,
            status=order.status.value,
            client_secret=remote.client_secret,
        )

    # ---- reconciliation entry points ----

    async def _reconcile(self, event: GatewayEvent) -> tuple[Optional[Payment], Optional[Order]]:
        async with self._uow_factory() as uow:
            reconciler = PaymentReconciler(
                uow.order_repository, uow.payment_repository, uow.refund_repository
            )
            payment = await reconciler.apply(event)
            order = None
            if payment is not None:
                order = await uow.order_repository.get_by_gateway_order_id(payment.gateway_order_id)
            events = reconciler.clear_events()
        self._dispatch(events)
        return payment, order

    def _dispatch(self, events: Iterable[Any]) -> None:
        """Queue notifications after commit; the pending-email sweep covers any that fail to enqueue."""
        for event in events:
            try:
                if isinstance(event, PaymentSucceeded):
                    self.notifier.notify_success(event.payment_id)
                elif isinstance(event, PaymentFailed):
                    self.notifier.notify_failure(event.payment_id)
            except Exception as exc:
                logger.error(
                    "payment_notification_enqueue_failed",
                    payment_id=event.payment_id,
                    event=type(event).__name__,
                    error=str(exc),
                )

    async def verify_payment(self, req: VerifyPaymentRequest) -> VerifyPaymentResponse:
        if not self.gateway.verify_checkout_signature(req.order_id, req.payment_id, req.signature):
            raise PaymentSignatureError(
                "Invalid payment signature",
                provider=self.gateway.provider,
                details={"order_id": req.order_id, "payment_id": req.payment_id},
            )

        async with self._uow_factory(readonly=True) as uow:
            local = await uow.payment_repository.get_by_gateway_order_id(req.order_id)
        if local is None:
            raise OrderNotFoundException(req.order_id)

        remote = await self.gateway.fetch_payment(req.payment_id)
        if remote.order_id and remote.order_id != req.order_id:
            raise DomainValidationException(
                "Payment does not belong to the given order",
                field="order_id",
                details={"order_id": req.order_id, "payment_order_id": remote.order_id},
            )

        event = event_from_gateway_payment(self.gateway.provider, remote, fallback_order_id=req.order_id)
        payment, order = (local, None)
        if event is not None:
            payment, order = await self._reconcile(event)
        if order is None:
            async with self._uow_factory(readonly=True) as uow:
                payment = payment or await uow.payment_repository.get_by_gateway_order_id(req.order_id)
                order = await uow.order_repository.get_by_gateway_order_id(req.order_id)

        logger.info(
            "payment_verified",
            gateway_order_id=req.order_id,
            gateway_payment_id=req.payment_id,
            remote_status=remote.status,
            status=payment.status.value,
        )
        return VerifyPaymentResponse(
            status=payment.status.value,
            order_status=order.status.value if order else None,
            payment_id=payment.gateway_payment_id or req.payment_id,
            order_id=req.order_id,
        )

    async def confirm_payment(self, payment_id: str) -> PaymentDTO:
        """Re-fetch a payment from the gateway and reconcile its current status."""
        remote = await self.gateway.fetch_payment(payment_id)
        if not remote.order_id:
            raise PaymentNotFoundException(payment_id)

        async with self._uow_factory(readonly=True) as uow:
            local = await uow.payment_repository.get_by_gateway_order_id(remote.order_id)
        if local is None:
            raise PaymentNotFoundException(payment_id)

        event = event_from_gateway_payment(self.gateway.provider, remote)
        payment = local
        if event is not None:
            payment, _ = await self._reconcile(event)
            payment = payment or local
        logger.info(
            "payment_confirmed",
            gateway_payment_id=payment_id,
            remote_status=remote.status,
            status=payment.status.value,
        )
        return _to_payment_dto(payment)

    async def handle_webhook(self, headers: dict, body: bytes) -> WebhookAck:
        # parse_webhook verifies the signature and raises PaymentSignatureError on mismatch
        event = self.gateway.parse_webhook(headers, body)
        logger.info(
            "payment_webhook_received",
            provider=self.gateway.provider,
            event_type=event.type,
            event_id=event.id,
            gateway_order_id=event.gateway_order_id,
            gateway_payment_id=event.gateway_payment_id,
        )
        payment, _ = await self._reconcile(event)
        return WebhookAck(event_type=event.type, processed=payment is not None)

    async def sync_order_status(self, order_id: str) -> int:
        """Reconcile every payment the gateway holds for an order; returns how many were applied."""
        remotes = await self.gateway.fetch_order_payments(order_id)
        applied = 0
        for remote in remotes:
            event = event_from_gateway_payment(self.gateway.provider, remote, fallback_order_id=order_id)
            if event is None:
                continue
            payment, _ = await self._reconcile(event)
            if payment is not None:
                applied += 1
        logger.info("payment_order_synced", gateway_order_id=order_id, remote_payments=len(remotes), applied=applied)
        return applied

    # ---- refunds ----

    async def refund(self, req: RefundRequest) -> RefundResponse:
        reason = req.reason or DEFAULT_REFUND_REASON
        async with self._uow_factory() as uow:
            domain_service = PaymentDomainService(
                uow.order_repository, uow.payment_repository, uow.refund_repository
            )
            payment = await domain_service.get_refundable_payment(req.payment_id, req.refund_amount)

            logger.info(
                "payment_refund_request",
                provider=self.gateway.provider,
                gateway_payment_id=req.payment_id,
                refund_amount=req.refund_amount,
            )
            remote = await self.gateway.refund(
                req.payment_id,
                amount=req.refund_amount,
                notes={"reason": reason},
            )
            payment, refund = await domain_service.record_refund(
                payment,
                gateway_refund_id=remote.id,
                amount=req.refund_amount,
                reason=reason,
            )

        logger.info(
            "payment_refunded",
            gateway_payment_id=req.payment_id,
            gateway_refund_id=refund.gateway_refund_id,
            refunded_amount=payment.refunded_amount,
            status=payment.status.value,
        )
        return RefundResponse(
            success=True,
            message="Refund processed successfully",
            payment_id=req.payment_id,
            refund_amount=req.refund_amount,
            refund_id=refund.gateway_refund_id,
            status=payment.status.value,
        )

    # ---- queries ----

    async def get_payment(self, payment_id: str) -> PaymentDTO:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_gateway_payment_id(payment_id)
            if payment is None:
                payment = await uow.payment_repository.get_by_gateway_order_id(payment_id)
        if payment is None:
            raise PaymentNotFoundException(payment_id)
        return _to_payment_dto(payment)

    async def list_payments(self, page: int, size: int) -> tuple[list[PaymentDTO], int]:
        async with self._uow_factory(readonly=True) as uow:
            items = await uow.payment_repository.list_all(skip=page * size, limit=size)
            total = await uow.payment_repository.count_all()
        return [_to_payment_dto(p) for p in items], total

    async def list_by_customer(self, email: str, page: int, size: int) -> tuple[list[PaymentDTO], int]:
        async with self._uow_factory(readonly=True) as uow:
            items = await uow.payment_repository.list_by_customer(email, skip=page * size, limit=size)
            total = await uow.payment_repository.count_by_customer(email)
        return [_to_payment_dto(p) for p in items], total

    async def get_order_status(self, order_id: str) -> OrderStatusDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_gateway_order_id(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            payments = await uow.payment_repository.list_by_gateway_order_id(order_id)
        return OrderStatusDTO(
            order=_to_order_dto(order),
            payments=[_to_payment_dto(p) for p in payments],
        )

    async def get_stats(self) -> PaymentStatsDTO:
        async with self._uow_factory(readonly=True) as uow:
            successful, revenue = await uow.payment_repository.stats_by_status(PaymentStatus.SUCCESS)
            failed, _ = await uow.payment_repository.stats_by_status(PaymentStatus.FAILED)
            total = await uow.payment_repository.count_all()

        success_rate = round(successful * 100.0 / total, 2) if total else 0.0
        average = round(revenue / successful, 2) if successful else 0.0
        return PaymentStatsDTO(
            successful_payments=successful,
            failed_payments=failed,
            total_payments=total,
            total_revenue=revenue,
            success_rate=success_rate,
            average_transaction_amount=average,
        )

    def get_key(self) -> KeyDTO:
        return KeyDTO(provider=self.gateway.provider, key_id=self.gateway.key_id)

    # ---- notifications ----

    async def send_pending_emails(self, limit: int = 100) -> int:
        """Queue notifications for settled payments whose email was never sent."""
        async with self._uow_factory(readonly=True) as uow:
            pending = await uow.payment_repository.list_pending_notifications(limit=limit)

        events: list[Any] = []
        for payment in pending:
            if payment.status == PaymentStatus.SUCCESS:
                events.append(PaymentSucceeded(payment_id=payment.id, gateway_order_id=payment.gateway_order_id))
            elif payment.status == PaymentStatus.FAILED:
                events.append(PaymentFailed(
                    payment_id=payment.id,
                    gateway_order_id=payment.gateway_order_id,
                    reason=payment.failure_reason,
                ))
        self._dispatch(events)
        logger.info("payment_pending_emails_dispatched", count=len(events))
        return len(events)
