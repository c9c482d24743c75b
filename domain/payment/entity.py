"""
支付领域实体 - 订单与支付聚合
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from enum import Enum

from domain.common.exceptions import DomainValidationException


class OrderStatus(str, Enum):
    """订单状态枚举"""
    CREATED = "CREATED"         # 已在网关创建
    AUTHORIZED = "AUTHORIZED"   # 已授权
    PAID = "PAID"               # 已支付
    FAILED = "FAILED"           # 支付失败


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "PENDING"                        # 待支付
    REQUIRES_ACTION = "REQUIRES_ACTION"        # 需要额外验证
    PROCESSING = "PROCESSING"                  # 处理中
    SUCCESS = "SUCCESS"                        # 支付成功
    FAILED = "FAILED"                          # 支付失败
    CANCELLED = "CANCELLED"                    # 已取消
    REFUNDED = "REFUNDED"                      # 已全额退款
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"  # 部分退款


# 尚未出结果的状态，可被任意网关事件推进
OPEN_STATUSES = frozenset({
    PaymentStatus.PENDING,
    PaymentStatus.REQUIRES_ACTION,
    PaymentStatus.PROCESSING,
})

# 不可再被支付事件改写的状态
REFUND_STATUSES = frozenset({
    PaymentStatus.REFUNDED,
    PaymentStatus.PARTIALLY_REFUNDED,
})

GENERIC_FAILURE_REASON = "Payment was declined. Please try a different payment method."


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_money(amount: int, currency: str) -> None:
    if amount is None or amount <= 0:
        raise DomainValidationException(f"Amount must be greater than 0: {amount}", field="amount")
    if not currency or len(currency) != 3 or not currency.isalpha():
        raise DomainValidationException(f"Invalid currency code: {currency}", field="currency")


@dataclass
class Order:
    """
    订单实体 - 在网关创建、在本地持久化的商户订单

    金额以最小货币单位（分/派萨）存储。
    """

    id: Optional[int]
    provider: str
    gateway_order_id: str
    amount: int
    currency: str
    receipt: str
    status: OrderStatus
    customer_email: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        _validate_money(self.amount, self.currency)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def mark_paid(self) -> bool:
        if self.status == OrderStatus.PAID:
            return False
        self.status = OrderStatus.PAID
        self.updated_at = _now()
        return True

    def mark_authorized(self) -> bool:
        """仅从 CREATED 推进，已支付/失败的订单不回退"""
        if self.status != OrderStatus.CREATED:
            return False
        self.status = OrderStatus.AUTHORIZED
        self.updated_at = _now()
        return True

    def mark_failed(self) -> bool:
        if self.status in (OrderStatus.PAID, OrderStatus.FAILED):
            return False
        self.status = OrderStatus.FAILED
        self.updated_at = _now()
        return True


@dataclass
class Payment:
    """
    支付实体 - 记录一笔资金流转及其生命周期

    业务规则：
    1. 网关支付ID唯一（下单时为空，由 webhook/verify 回填）
    2. 已退款金额不能超过支付金额
    3. refunded 为真当且仅当 refunded_amount == amount
    4. 只有成功（或部分退款）的支付才能退款
    """

    id: Optional[int]
    provider: str
    gateway_order_id: str
    amount: int
    currency: str
    status: PaymentStatus
    customer_email: str
    gateway_payment_id: Optional[str] = None
    description: Optional[str] = None
    failure_reason: Optional[str] = None
    payment_method_type: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    refunded: bool = False
    refunded_amount: int = 0
    email_sent: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        _validate_money(self.amount, self.currency)
        if self.refunded_amount < 0 or self.refunded_amount > self.amount:
            raise DomainValidationException(
                f"Refunded amount {self.refunded_amount} out of range for amount {self.amount}",
                field="refunded_amount",
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def backfill(
        self,
        *,
        gateway_payment_id: Optional[str] = None,
        card_brand: Optional[str] = None,
        card_last4: Optional[str] = None,
        method: Optional[str] = None,
    ) -> bool:
        """回填网关信息，只补空缺字段（payment id 允许被新的尝试覆盖）"""
        changed = False
        if gateway_payment_id and gateway_payment_id != self.gateway_payment_id:
            self.gateway_payment_id = gateway_payment_id
            changed = True
        if card_brand and not self.card_brand:
            self.card_brand = card_brand
            changed = True
        if card_last4 and not self.card_last4:
            self.card_last4 = card_last4
            changed = True
        if method and self.payment_method_type != method:
            self.payment_method_type = method
            changed = True
        if changed:
            self.updated_at = _now()
        return changed

    def mark_success(self) -> bool:
        """
        标记支付成功

        业务规则：可从待处理状态或 FAILED（后续重试成功）转为 SUCCESS；
        已成功或已退款的支付保持不变。返回是否发生了状态转换。
        """
        if self.status not in OPEN_STATUSES and self.status != PaymentStatus.FAILED:
            return False
        if self.status == PaymentStatus.FAILED:
            # 失败通知已发出，成功结果需要重新通知
            self.email_sent = False
        self.status = PaymentStatus.SUCCESS
        self.failure_reason = None
        self.updated_at = _now()
        return True

    def mark_failed(self, reason: Optional[str] = None) -> bool:
        """标记支付失败：只能从待处理状态转换"""
        if self.status not in OPEN_STATUSES:
            return False
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason or GENERIC_FAILURE_REASON
        self.updated_at = _now()
        return True

    def mark_processing(self) -> bool:
        if self.status not in (PaymentStatus.PENDING, PaymentStatus.REQUIRES_ACTION):
            return False
        self.status = PaymentStatus.PROCESSING
        self.updated_at = _now()
        return True

    def mark_requires_action(self) -> bool:
        if self.status != PaymentStatus.PENDING:
            return False
        self.status = PaymentStatus.REQUIRES_ACTION
        self.updated_at = _now()
        return True

    def can_refund(self) -> bool:
        """检查是否可以退款"""
        return (
            self.status in (PaymentStatus.SUCCESS, PaymentStatus.PARTIALLY_REFUNDED)
            and not self.refunded
            and self.refunded_amount < self.amount
        )

    def calculate_refundable_amount(self) -> int:
        """计算可退款金额"""
        return self.amount - self.refunded_amount

    def needs_notification(self) -> bool:
        return not self.email_sent and self.status in (PaymentStatus.SUCCESS, PaymentStatus.FAILED)


@dataclass
class Refund:
    """
    退款实体 - Payment 聚合的一部分

    网关退款ID唯一，用于识别重复投递的 refund.processed 事件。
    """

    id: Optional[int]
    payment_id: int
    gateway_refund_id: str
    amount: int
    currency: str
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        _validate_money(self.amount, self.currency)
        self.created_at = _ensure_utc(self.created_at)
