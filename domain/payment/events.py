"""
Payment domain events.

`GatewayEvent` is the provider-neutral shape of something the gateway told us
(webhook delivery or a re-fetched status). The remaining dataclasses record
lifecycle facts produced by reconciliation for downstream handling
(notification dispatch). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
import uuid


PAYMENT_AUTHORIZED = "payment.authorized"
PAYMENT_CAPTURED = "payment.captured"
PAYMENT_FAILED = "payment.failed"
PAYMENT_PROCESSING = "payment.processing"
PAYMENT_REQUIRES_ACTION = "payment.requires_action"
ORDER_PAID = "order.paid"
REFUND_PROCESSED = "refund.processed"


@dataclass
class GatewayEvent:
    type: str
    provider: str
    id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_refund_id: Optional[str] = None
    amount: Optional[int] = None
    method: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    error_description: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentEvent:
    payment_id: int
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentSucceeded(PaymentEvent):
    pass


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None
