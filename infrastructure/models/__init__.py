"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import OrderModel, PaymentModel, RefundModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "PaymentModel",
    "RefundModel",
]
