"""
支付领域服务 - 处理订单落库与退款业务规则
"""
from typing import Optional
from datetime import datetime, timezone

import structlog

from .entity import Order, OrderStatus, Payment, PaymentStatus, Refund
from .repository import OrderRepository, PaymentRepository, RefundRepository
from domain.common.exceptions import (
    DomainValidationException,
    NotFoundException,
    BusinessException,
)
from shared.codes.payment_codes import PaymentCode


logger = structlog.get_logger(__name__)


class PaymentNotFoundException(NotFoundException):
    """支付记录不存在"""
    def __init__(self, identifier: str):
        super().__init__(
            f"Payment not found: {identifier}",
            details={"payment_id": identifier},
            code=PaymentCode.PAYMENT_NOT_FOUND,
            error_type="PaymentNotFound",
        )


class OrderNotFoundException(NotFoundException):
    """订单不存在"""
    def __init__(self, identifier: str):
        super().__init__(
            f"Order not found: {identifier}",
            details={"order_id": identifier},
            code=PaymentCode.ORDER_NOT_FOUND,
            error_type="OrderNotFound",
        )


class PaymentNotRefundableException(DomainValidationException):
    """支付不可退款"""
    def __init__(self, status: PaymentStatus):
        super().__init__(
            "Only successful payments can be refunded",
            field="status",
            details={"status": status.value},
            code=PaymentCode.PAYMENT_NOT_REFUNDABLE,
        )


class PaymentAlreadyRefundedException(DomainValidationException):
    """支付已全额退款"""
    def __init__(self, payment_id: str):
        super().__init__(
            "Payment already refunded",
            field="payment_id",
            details={"payment_id": payment_id},
            code=PaymentCode.PAYMENT_ALREADY_REFUNDED,
        )


class RefundExceedsPaymentException(DomainValidationException):
    """退款金额超过可退金额"""
    def __init__(self, refund_amount: int, available: int):
        super().__init__(
            "Refund amount exceeds available amount",
            field="refund_amount",
            details={"refund_amount": refund_amount, "available": available},
            code=PaymentCode.REFUND_EXCEEDS_PAYMENT,
        )


class AmountOutOfRangeException(DomainValidationException):
    """下单金额超出允许范围"""
    def __init__(self, amount: int, min_amount: int, max_amount: int):
        super().__init__(
            f"Amount must be between {min_amount} and {max_amount} minor units",
            field="amount",
            details={"amount": amount, "min": min_amount, "max": max_amount},
            code=PaymentCode.AMOUNT_OUT_OF_RANGE,
        )


class PaymentDomainService:
    """
    支付领域服务 - 编排订单创建与退款流程

    职责：
    1. 下单金额边界校验
    2. 下单后订单/支付记录落库
    3. 退款前置校验（全部在调用网关之前完成）
    4. 退款成功后应用金额并记录退款明细
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

    @staticmethod
    def validate_amount(amount: int, min_amount: int, max_amount: int) -> None:
        if amount < min_amount or amount > max_amount:
            raise AmountOutOfRangeException(amount, min_amount, max_amount)

    async def create_records(
        self,
        *,
        provider: str,
        gateway_order_id: str,
        amount: int,
        currency: str,
        receipt: str,
        customer_email: str,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        description: Optional[str] = None,
    ) -> tuple[Order, Payment]:
        """网关下单成功后创建本地订单与待支付记录"""
        now = datetime.now(timezone.utc)
        order = await self.order_repository.create(Order(
            id=None,
            provider=provider,
            gateway_order_id=gateway_order_id,
            amount=amount,
            currency=currency.upper(),
            receipt=receipt,
            status=OrderStatus.CREATED,
            customer_email=customer_email,
            customer_name=customer_name,
            customer_phone=customer_phone,
            description=description,
            created_at=now,
            updated_at=now,
        ))
        payment = await self.payment_repository.create(Payment(
            id=None,
            provider=provider,
            gateway_order_id=gateway_order_id,
            amount=amount,
            currency=currency.upper(),
            status=PaymentStatus.PENDING,
            customer_email=customer_email,
            description=description,
            payment_method_type=provider,
            created_at=now,
            updated_at=now,
        ))
        return order, payment

    async def get_refundable_payment(self, gateway_payment_id: str, refund_amount: int) -> Payment:
        """
        退款前置校验

        业务规则：
        1. 支付必须存在
        2. 状态必须为成功（或部分退款）
        3. 未全额退款
        4. 退款金额不能超过剩余可退金额
        """
        payment = await self.payment_repository.get_by_gateway_payment_id(gateway_payment_id, for_update=True)
        if not payment:
            raise PaymentNotFoundException(gateway_payment_id)

        if payment.refunded or payment.status == PaymentStatus.REFUNDED:
            raise PaymentAlreadyRefundedException(gateway_payment_id)

        if not payment.can_refund():
            raise PaymentNotRefundableException(payment.status)

        if refund_amount <= 0:
            raise DomainValidationException(
                "Refund amount must be greater than 0",
                field="refund_amount",
            )

        refundable = payment.calculate_refundable_amount()
        if refund_amount > refundable:
            raise RefundExceedsPaymentException(refund_amount, refundable)

        return payment

    async def record_refund(
        self,
        payment: Payment,
        *,
        gateway_refund_id: str,
        amount: int,
        reason: Optional[str] = None,
    ) -> tuple[Payment, Refund]:
        """
        网关退款成功后应用金额并记录退款明细

        同一网关退款ID只记一次（webhook 可能先于本事务到达）。
        金额在数据库内条件累加，并发退款不会丢失更新。
        """
        if payment.id is None:
            raise BusinessException(
                code=PaymentCode.PAYMENT_NOT_FOUND,
                message="Payment must be persisted before refunding",
                error_type="PaymentNotPersisted",
            )
        existing = await self.refund_repository.get_by_gateway_refund_id(gateway_refund_id)
        if existing is not None:
            logger.info("refund_already_recorded", payment_id=payment.id, gateway_refund_id=gateway_refund_id)
            return await self.payment_repository.get_by_id(payment.id), existing

        updated = await self.payment_repository.add_refunded_amount(payment.id, amount)
        if updated is None:
            # 网关已退款但本地累加被拒绝，需要人工核对
            current = await self.payment_repository.get_by_id(payment.id)
            logger.error(
                "refund_not_applied",
                payment_id=payment.id,
                gateway_refund_id=gateway_refund_id,
                amount=amount,
                refunded_amount=current.refunded_amount,
            )
            raise RefundExceedsPaymentException(amount, current.calculate_refundable_amount())

        refund = await self.refund_repository.create(Refund(
            id=None,
            payment_id=payment.id,
            gateway_refund_id=gateway_refund_id,
            amount=amount,
            currency=payment.currency,
            reason=reason,
            created_at=datetime.now(timezone.utc),
        ))
        return updated, refund
