"""
支付对账器 - 将网关事件按固定映射应用到本地订单/支付记录

webhook 与同步确认（verify/confirm）都走这里，保证两条入口得到相同的状态。
状态转换都先检查当前状态，重复投递的事件只会做幂等的重复应用。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import structlog

from .entity import Order, Payment, PaymentStatus, REFUND_STATUSES, Refund
from .events import (
    GatewayEvent,
    PaymentFailed,
    PaymentSucceeded,
    ORDER_PAID,
    PAYMENT_AUTHORIZED,
    PAYMENT_CAPTURED,
    PAYMENT_FAILED,
    PAYMENT_PROCESSING,
    PAYMENT_REQUIRES_ACTION,
    REFUND_PROCESSED,
)
from .repository import OrderRepository, PaymentRepository, RefundRepository


logger = structlog.get_logger(__name__)


class PaymentReconciler:
    """
    事件 → 状态映射：

    - payment.captured / order.paid  → 支付 SUCCESS，订单 PAID
    - payment.authorized             → 支付 SUCCESS，订单 AUTHORIZED，回填卡信息与支付ID
    - payment.failed                 → 支付 FAILED（失败原因取自事件），订单 FAILED
    - refund.processed               → 按退款ID去重后累加退款金额
    - payment.processing / payment.requires_action → 非终态推进
    - 其它事件                        → 记录日志并忽略

    本地找不到记录时只记录日志，不抛异常。
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        payment_repository: PaymentRepository,
        refund_repository: RefundRepository,
    ):
        self.order_repository = order_repository
        self.payment_repository = payment_repository
        self.refund_repository = refund_repository
        self.events: List = []

    async def apply(self, event: GatewayEvent) -> Optional[Payment]:
        handlers = {
            PAYMENT_CAPTURED: self._on_captured,
            ORDER_PAID: self._on_captured,
            PAYMENT_AUTHORIZED: self._on_authorized,
            PAYMENT_FAILED: self._on_failed,
            PAYMENT_PROCESSING: self._on_processing,
            PAYMENT_REQUIRES_ACTION: self._on_requires_action,
            REFUND_PROCESSED: self._on_refund_processed,
        }
        handler = handlers.get(event.type)
        if handler is None:
            logger.info("gateway_event_unhandled", event_type=event.type, event_id=event.id, provider=event.provider)
            return None
        return await handler(event)

    async def _load_by_order(self, event: GatewayEvent) -> tuple[Optional[Order], Optional[Payment]]:
        if not event.gateway_order_id:
            logger.warning("gateway_event_missing_order_id", event_type=event.type, event_id=event.id)
            return None, None
        payment = await self.payment_repository.get_by_gateway_order_id(event.gateway_order_id)
        if payment is None:
            logger.error(
                "gateway_event_payment_not_found",
                event_type=event.type,
                gateway_order_id=event.gateway_order_id,
            )
            return None, None
        order = await self.order_repository.get_by_gateway_order_id(event.gateway_order_id)
        return order, payment

    def _backfill(self, payment: Payment, event: GatewayEvent) -> bool:
        return payment.backfill(
            gateway_payment_id=event.gateway_payment_id,
            card_brand=event.card_brand,
            card_last4=event.card_last4,
            method=event.method,
        )

    async def _succeed(self, event: GatewayEvent, mark_order) -> Optional[Payment]:
        order, payment = await self._load_by_order(event)
        if payment is None:
            return None

        if payment.status in REFUND_STATUSES or payment.status == PaymentStatus.CANCELLED:
            logger.info(
                "gateway_event_ignored_for_status",
                event_type=event.type,
                payment_id=payment.id,
                status=payment.status.value,
            )
            return payment

        changed = self._backfill(payment, event)
        was_failed = payment.status == PaymentStatus.FAILED
        transitioned = payment.mark_success()
        if order is not None and mark_order(order):
            await self.order_repository.update(order)
        if transitioned and was_failed:
            # 之前的失败通知已发出，成功结果需要重新通知
            await self.payment_repository.release_email(payment.id)

        if transitioned and payment.needs_notification():
            self.events.append(PaymentSucceeded(
                payment_id=payment.id,
                gateway_order_id=payment.gateway_order_id,
                gateway_payment_id=payment.gateway_payment_id,
            ))
        if transitioned or changed:
            payment = await self.payment_repository.update(payment)
        logger.info(
            "payment_reconciled",
            event_type=event.type,
            payment_id=payment.id,
            gateway_payment_id=payment.gateway_payment_id,
            status=payment.status.value,
            transitioned=transitioned,
        )
        return payment

    async def _on_captured(self, event: GatewayEvent) -> Optional[Payment]:
        return await self._succeed(event, lambda order: order.mark_paid())

    async def _on_authorized(self, event: GatewayEvent) -> Optional[Payment]:
        return await self._succeed(event, lambda order: order.mark_authorized())

    async def _on_failed(self, event: GatewayEvent) -> Optional[Payment]:
        order, payment = await self._load_by_order(event)
        if payment is None:
            return None

        transitioned = payment.mark_failed(event.error_description)
        if not transitioned:
            logger.info(
                "gateway_event_ignored_for_status",
                event_type=event.type,
                payment_id=payment.id,
                status=payment.status.value,
            )
            return payment

        self._backfill(payment, event)
        if order is not None and order.mark_failed():
            await self.order_repository.update(order)
        if payment.needs_notification():
            self.events.append(PaymentFailed(
                payment_id=payment.id,
                gateway_order_id=payment.gateway_order_id,
                gateway_payment_id=payment.gateway_payment_id,
                reason=payment.failure_reason,
            ))
        payment = await self.payment_repository.update(payment)
        logger.info("payment_reconciled", event_type=event.type, payment_id=payment.id, status=payment.status.value)
        return payment

    async def _on_processing(self, event: GatewayEvent) -> Optional[Payment]:
        _, payment = await self._load_by_order(event)
        if payment is None:
            return None
        changed = self._backfill(payment, event)
        if payment.mark_processing() or changed:
            payment = await self.payment_repository.update(payment)
        return payment

    async def _on_requires_action(self, event: GatewayEvent) -> Optional[Payment]:
        _, payment = await self._load_by_order(event)
        if payment is None:
            return None
        changed = self._backfill(payment, event)
        if payment.mark_requires_action() or changed:
            payment = await self.payment_repository.update(payment)
        return payment

    async def _on_refund_processed(self, event: GatewayEvent) -> Optional[Payment]:
        if not event.gateway_payment_id:
            logger.warning("gateway_event_missing_payment_id", event_type=event.type, event_id=event.id)
            return None
        payment = await self.payment_repository.get_by_gateway_payment_id(event.gateway_payment_id, for_update=True)
        if payment is None:
            logger.error(
                "gateway_event_payment_not_found",
                event_type=event.type,
                gateway_payment_id=event.gateway_payment_id,
            )
            return None

        if event.gateway_refund_id:
            existing = await self.refund_repository.get_by_gateway_refund_id(event.gateway_refund_id)
            if existing is not None:
                logger.info(
                    "refund_already_recorded",
                    payment_id=payment.id,
                    gateway_refund_id=event.gateway_refund_id,
                )
                return payment

        if not payment.can_refund():
            logger.info(
                "gateway_event_ignored_for_status",
                event_type=event.type,
                payment_id=payment.id,
                status=payment.status.value,
            )
            return payment

        refundable = payment.calculate_refundable_amount()
        # 无金额视为全额退款；超出部分按剩余可退金额截断
        amount = min(event.amount or refundable, refundable)
        updated = await self.payment_repository.add_refunded_amount(payment.id, amount)
        if updated is None:
            logger.warning(
                "gateway_refund_not_applied",
                event_type=event.type,
                payment_id=payment.id,
                amount=amount,
            )
            return payment
        if event.gateway_refund_id:
            await self.refund_repository.create(Refund(
                id=None,
                payment_id=payment.id,
                gateway_refund_id=event.gateway_refund_id,
                amount=amount,
                currency=payment.currency,
                reason="gateway",
                created_at=datetime.now(timezone.utc),
            ))
        logger.info(
            "payment_reconciled",
            event_type=event.type,
            payment_id=updated.id,
            refunded_amount=updated.refunded_amount,
            status=updated.status.value,
        )
        return updated

    def clear_events(self) -> List:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
