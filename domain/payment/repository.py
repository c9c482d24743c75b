"""
支付仓储接口 - 定义订单/支付/退款数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Order, Payment, Refund, PaymentStatus


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单记录"""
        pass

    @abstractmethod
    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        """根据网关订单ID获取订单"""
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """更新订单记录"""
        pass


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        """根据ID获取支付"""
        pass

    @abstractmethod
    async def get_by_gateway_payment_id(
        self, gateway_payment_id: str, for_update: bool = False
    ) -> Optional[Payment]:
        """根据网关支付ID获取支付；for_update=True 时锁定该行直到事务结束"""
        pass

    @abstractmethod
    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Payment]:
        """根据网关订单ID获取支付（一个订单对应一条支付记录）"""
        pass

    @abstractmethod
    async def list_by_gateway_order_id(self, gateway_order_id: str) -> List[Payment]:
        """获取订单关联的全部支付"""
        pass

    @abstractmethod
    async def list_all(self, skip: int = 0, limit: int = 10) -> List[Payment]:
        """分页获取支付列表（按创建时间倒序）"""
        pass

    @abstractmethod
    async def count_all(self) -> int:
        """支付总数"""
        pass

    @abstractmethod
    async def list_by_customer(self, email: str, skip: int = 0, limit: int = 10) -> List[Payment]:
        """分页获取客户的支付列表"""
        pass

    @abstractmethod
    async def count_by_customer(self, email: str) -> int:
        """客户支付数量"""
        pass

    @abstractmethod
    async def list_pending_notifications(self, limit: int = 100) -> List[Payment]:
        """获取已出结果但尚未发送通知邮件的支付"""
        pass

    @abstractmethod
    async def stats_by_status(self, status: PaymentStatus) -> tuple[int, int]:
        """按状态统计 (数量, 金额合计)"""
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """更新支付记录"""
        pass

    @abstractmethod
    async def add_refunded_amount(self, payment_id: int, amount: int) -> Optional[Payment]:
        """
        原子地累加退款金额并更新状态

        累加后超过支付金额或状态不可退款时不做修改，返回 None。
        全额退款后状态为 REFUNDED，否则为 PARTIALLY_REFUNDED。
        """
        pass

    @abstractmethod
    async def claim_email(self, payment_id: int) -> bool:
        """原子地把 email_sent 从 False 置为 True，返回是否抢占成功"""
        pass

    @abstractmethod
    async def release_email(self, payment_id: int) -> None:
        """发送失败时释放抢占，交给补发任务重试"""
        pass


class RefundRepository(ABC):
    """退款仓储抽象接口"""

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        """创建退款记录"""
        pass

    @abstractmethod
    async def get_by_gateway_refund_id(self, gateway_refund_id: str) -> Optional[Refund]:
        """根据网关退款ID获取退款"""
        pass
