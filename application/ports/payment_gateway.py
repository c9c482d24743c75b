"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters
(Razorpay, Stripe). Amounts are integers in minor currency units.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import GatewayOrder, GatewayPayment, GatewayRefund
from domain.payment.events import GatewayEvent


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations should be async and side-effect free beyond IO.
    `parse_webhook` must verify authenticity and raise `PaymentSignatureError`
    before returning anything.
    """

    provider: str

    @property
    def key_id(self) -> Optional[str]: ...

    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[dict[str, Any]] = None,
    ) -> GatewayOrder: ...

    async def fetch_payment(self, payment_id: str) -> GatewayPayment: ...

    async def fetch_order_payments(self, order_id: str) -> list[GatewayPayment]: ...

    async def refund(
        self,
        payment_id: str,
        *,
        amount: int,
        notes: Optional[dict[str, Any]] = None,
    ) -> GatewayRefund: ...

    def verify_checkout_signature(self, order_id: str, payment_id: str, signature: str) -> bool: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> GatewayEvent: ...
