"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Text,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderModel(Base):
    """
    订单数据库模型

    金额以最小货币单位存储（整数），业务规则在 domain.payment.entity.Order 中
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)

    provider = Column(String(50), nullable=False, index=True, comment="支付提供商: razorpay/stripe")
    gateway_order_id = Column(String(100), unique=True, index=True, nullable=False, comment="网关订单ID")

    amount = Column(BigInteger, nullable=False, comment="订单金额（最小货币单位）")
    currency = Column(String(3), nullable=False, default="INR", comment="货币代码 ISO-4217")
    receipt = Column(String(100), nullable=False, comment="商户收据号")

    status = Column(
        String(20),
        nullable=False,
        default="CREATED",
        index=True,
        comment="订单状态: CREATED/AUTHORIZED/PAID/FAILED"
    )

    customer_email = Column(String(255), nullable=False, index=True, comment="客户邮箱")
    customer_name = Column(String(255), nullable=True, comment="客户姓名")
    customer_phone = Column(String(20), nullable=True, comment="客户电话")
    description = Column(String(500), nullable=True, comment="订单描述")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间")

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, gateway_order_id='{self.gateway_order_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)

    provider = Column(String(50), nullable=False, index=True, comment="支付提供商")
    # 下单时为空，由 webhook/verify 回填
    gateway_payment_id = Column(String(100), unique=True, nullable=True, comment="网关支付ID")
    gateway_order_id = Column(String(100), nullable=False, index=True, comment="网关订单ID")

    amount = Column(BigInteger, nullable=False, comment="支付金额（最小货币单位）")
    currency = Column(String(3), nullable=False, default="INR", comment="货币代码")

    status = Column(
        String(30),
        nullable=False,
        default="PENDING",
        index=True,
        comment="支付状态: PENDING/REQUIRES_ACTION/PROCESSING/SUCCESS/FAILED/CANCELLED/REFUNDED/PARTIALLY_REFUNDED"
    )

    customer_email = Column(String(255), nullable=False, index=True, comment="客户邮箱")
    description = Column(String(500), nullable=True, comment="支付描述")
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    payment_method_type = Column(String(50), nullable=True, comment="支付方式")
    card_brand = Column(String(50), nullable=True, comment="卡组织")
    card_last4 = Column(String(4), nullable=True, comment="卡号后四位")

    refunded = Column(Boolean, nullable=False, default=False, comment="是否全额退款")
    refunded_amount = Column(BigInteger, nullable=False, default=0, comment="已退款金额")
    email_sent = Column(Boolean, nullable=False, default=False, comment="通知邮件是否已发送")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间")

    refunds = relationship("RefundModel", back_populates="payment", lazy="select")

    __table_args__ = (
        Index("ix_payments_status_email_sent", "status", "email_sent"),
        Index("ix_payments_created_at", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, gateway_payment_id='{self.gateway_payment_id}', "
            f"gateway_order_id='{self.gateway_order_id}', amount={self.amount}, status='{self.status}')>"
        )


class RefundModel(Base):
    """
    退款数据库模型

    退款作为支付聚合的一部分；网关退款ID唯一，用于识别重复投递
    """
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)

    payment_id = Column(
        Integer,
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="关联的支付ID"
    )
    gateway_refund_id = Column(String(100), unique=True, nullable=False, comment="网关退款ID")

    amount = Column(BigInteger, nullable=False, comment="退款金额（最小货币单位）")
    currency = Column(String(3), nullable=False, comment="货币代码")
    reason = Column(String(255), nullable=True, comment="退款原因")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")

    payment = relationship("PaymentModel", back_populates="refunds")

    def __repr__(self):
        return (
            f"<RefundModel(id={self.id}, payment_id={self.payment_id}, "
            f"gateway_refund_id='{self.gateway_refund_id}', amount={self.amount})>"
        )
