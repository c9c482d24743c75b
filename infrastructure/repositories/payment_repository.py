"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update, case

from domain.payment.entity import Order, OrderStatus, Payment, PaymentStatus, Refund
from domain.payment.repository import OrderRepository, PaymentRepository, RefundRepository
from infrastructure.models.payment import OrderModel, PaymentModel, RefundModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            id=model.id,
            provider=model.provider,
            gateway_order_id=model.gateway_order_id,
            amount=int(model.amount),
            currency=model.currency,
            receipt=model.receipt,
            status=OrderStatus(model.status),
            customer_email=model.customer_email,
            customer_name=model.customer_name,
            customer_phone=model.customer_phone,
            description=model.description,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, order: Order) -> Order:
        db_order = OrderModel(
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
        self.session.add(db_order)
        await self.session.flush()
        await self.session.refresh(db_order)
        logger.info("order_created", order_id=db_order.id, gateway_order_id=db_order.gateway_order_id)
        return self._to_entity(db_order)

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.gateway_order_id == gateway_order_id)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def update(self, order: Order) -> Order:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order.id)
        )
        db_order = result.scalar_one_or_none()
        if not db_order:
            raise ValueError(f"Order with id {order.id} not found")

        db_order.status = order.status.value
        db_order.updated_at = order.updated_at
        await self.session.flush()
        await self.session.refresh(db_order)
        logger.info("order_updated", order_id=db_order.id, status=db_order.status)
        return self._to_entity(db_order)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            provider=model.provider,
            gateway_order_id=model.gateway_order_id,
            amount=int(model.amount),
            currency=model.currency,
            status=PaymentStatus(model.status),
            customer_email=model.customer_email,
            gateway_payment_id=model.gateway_payment_id,
            description=model.description,
            failure_reason=model.failure_reason,
            payment_method_type=model.payment_method_type,
            card_brand=model.card_brand,
            card_last4=model.card_last4,
            refunded=bool(model.refunded),
            refunded_amount=int(model.refunded_amount or 0),
            email_sent=bool(model.email_sent),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, payment: Payment) -> Payment:
        db_payment = PaymentModel(
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
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            gateway_order_id=db_payment.gateway_order_id,
            provider=db_payment.provider,
        )
        return self._to_entity(db_payment)

    async def _one(self, *criteria, for_update: bool = False) -> Optional[Payment]:
        stmt = (
            select(PaymentModel)
            .where(*criteria)
            .order_by(PaymentModel.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        db_payment = result.scalars().first()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        return await self._one(PaymentModel.id == payment_id)

    async def get_by_gateway_payment_id(
        self, gateway_payment_id: str, for_update: bool = False
    ) -> Optional[Payment]:
        return await self._one(PaymentModel.gateway_payment_id == gateway_payment_id, for_update=for_update)

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Payment]:
        return await self._one(PaymentModel.gateway_order_id == gateway_order_id)

    async def list_by_gateway_order_id(self, gateway_order_id: str) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.gateway_order_id == gateway_order_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_all(self, skip: int = 0, limit: int = 10) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def count_all(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(PaymentModel))
        return int(result.scalar_one())

    async def list_by_customer(self, email: str, skip: int = 0, limit: int = 10) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.customer_email == email)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def count_by_customer(self, email: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(PaymentModel).where(PaymentModel.customer_email == email)
        )
        return int(result.scalar_one())

    async def list_pending_notifications(self, limit: int = 100) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.status.in_([PaymentStatus.SUCCESS.value, PaymentStatus.FAILED.value]),
                PaymentModel.email_sent.is_(False),
            )
            .order_by(PaymentModel.id.asc())
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def stats_by_status(self, status: PaymentStatus) -> tuple[int, int]:
        result = await self.session.execute(
            select(func.count(PaymentModel.id), func.coalesce(func.sum(PaymentModel.amount), 0))
            .where(PaymentModel.status == status.value)
        )
        count, total = result.one()
        return int(count), int(total)

    async def update(self, payment: Payment) -> Payment:
        """更新支付记录（email_sent 只由 claim/release 修改，退款金额只由 add_refunded_amount 修改）"""
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.id == payment.id)
        )
        db_payment = result.scalar_one_or_none()
        if not db_payment:
            raise ValueError(f"Payment with id {payment.id} not found")

        db_payment.gateway_payment_id = payment.gateway_payment_id
        db_payment.status = payment.status.value
        db_payment.failure_reason = payment.failure_reason
        db_payment.payment_method_type = payment.payment_method_type
        db_payment.card_brand = payment.card_brand
        db_payment.card_last4 = payment.card_last4
        db_payment.updated_at = payment.updated_at

        await self.session.flush()
        await self.session.refresh(db_payment)

        logger.info(
            "payment_updated",
            payment_id=db_payment.id,
            gateway_order_id=db_payment.gateway_order_id,
            status=db_payment.status,
        )
        return self._to_entity(db_payment)

    async def add_refunded_amount(self, payment_id: int, amount: int) -> Optional[Payment]:
        """在数据库内累加退款金额，超出支付金额时不更新并返回 None"""
        new_total = PaymentModel.refunded_amount + amount
        fully_refunded = new_total == PaymentModel.amount
        result = await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status.in_([
                    PaymentStatus.SUCCESS.value,
                    PaymentStatus.PARTIALLY_REFUNDED.value,
                ]),
                new_total <= PaymentModel.amount,
            )
            .values(
                refunded_amount=new_total,
                refunded=case((fully_refunded, True), else_=False),
                status=case(
                    (fully_refunded, PaymentStatus.REFUNDED.value),
                    else_=PaymentStatus.PARTIALLY_REFUNDED.value,
                ),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("payment_refund_rejected", payment_id=payment_id, amount=amount)
            return None

        payment = await self.get_by_id(payment_id)
        logger.info(
            "payment_refund_applied",
            payment_id=payment_id,
            amount=amount,
            refunded_amount=payment.refunded_amount,
            status=payment.status.value,
        )
        return payment

    async def claim_email(self, payment_id: int) -> bool:
        # 条件更新保证并发的 worker 只有一个能抢到
        result = await self.session.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment_id, PaymentModel.email_sent.is_(False))
            .values(email_sent=True)
        )
        return result.rowcount == 1

    async def release_email(self, payment_id: int) -> None:
        await self.session.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .values(email_sent=False)
        )


class SQLAlchemyRefundRepository(RefundRepository):
    """退款仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        return Refund(
            id=model.id,
            payment_id=model.payment_id,
            gateway_refund_id=model.gateway_refund_id,
            amount=int(model.amount),
            currency=model.currency,
            reason=model.reason,
            created_at=model.created_at,
        )

    async def create(self, refund: Refund) -> Refund:
        db_refund = RefundModel(
            payment_id=refund.payment_id,
            gateway_refund_id=refund.gateway_refund_id,
            amount=refund.amount,
            currency=refund.currency,
            reason=refund.reason,
            created_at=refund.created_at,
        )
        self.session.add(db_refund)
        await self.session.flush()
        await self.session.refresh(db_refund)
        logger.info(
            "refund_created",
            refund_id=db_refund.id,
            payment_id=db_refund.payment_id,
            gateway_refund_id=db_refund.gateway_refund_id,
            amount=db_refund.amount,
        )
        return self._to_entity(db_refund)

    async def get_by_gateway_refund_id(self, gateway_refund_id: str) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.gateway_refund_id == gateway_refund_id)
        )
        db_refund = result.scalar_one_or_none()
        return self._to_entity(db_refund) if db_refund else None
