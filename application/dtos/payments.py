"""
Payment DTOs (Pydantic v2) used at application boundaries.

Request/response models use camelCase on the wire and accept snake_case on
input. Gateway result models are the provider-neutral shapes returned by the
`PaymentGateway` adapters.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _upper_currency(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    u = v.strip().upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    return u


# ---- Requests ----

class CreateOrderRequest(CamelModel):
    amount: int = Field(..., description="Amount in minor currency units (e.g. paise)")
    currency: Optional[str] = None
    customer_email: EmailStr
    customer_name: Optional[str] = Field(default=None, max_length=255)
    customer_phone: Optional[str] = Field(default=None, max_length=20)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return _upper_currency(v)


class VerifyPaymentRequest(CamelModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class RefundRequest(CamelModel):
    payment_id: str = Field(..., min_length=1)
    refund_amount: int
    reason: Optional[str] = Field(default=None, max_length=255)


# ---- Responses ----

class CreateOrderResponse(CamelModel):
    order_id: str
    amount: int
    currency: str
    key_id: Optional[str] = None
    receipt: str
    status: str
    client_secret: Optional[str] = None


class VerifyPaymentResponse(CamelModel):
    status: str
    order_status: Optional[str] = None
    payment_id: Optional[str] = None
    order_id: str


class RefundResponse(CamelModel):
    success: bool
    message: str
    payment_id: str
    refund_amount: int
    refund_id: str
    status: str


class PaymentDTO(CamelModel):
    id: int
    provider: str
    gateway_payment_id: Optional[str] = None
    gateway_order_id: str
    amount: int
    currency: str
    status: str
    customer_email: str
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


class OrderDTO(CamelModel):
    id: int
    provider: str
    gateway_order_id: str
    amount: int
    currency: str
    receipt: str
    status: str
    customer_email: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderStatusDTO(CamelModel):
    order: OrderDTO
    payments: list[PaymentDTO]


class PaymentStatsDTO(CamelModel):
    successful_payments: int
    failed_payments: int
    total_payments: int
    total_revenue: int
    success_rate: float
    average_transaction_amount: float


class KeyDTO(CamelModel):
    provider: str
    key_id: Optional[str] = None


class WebhookAck(CamelModel):
    received: bool = True
    event_type: str
    processed: bool


class PendingEmailsResult(CamelModel):
    dispatched: int


# ---- Gateway results ----

class GatewayOrder(BaseModel):
    id: str
    amount: int
    currency: str
    receipt: str
    status: str
    client_secret: Optional[str] = None


class GatewayPayment(BaseModel):
    id: str
    order_id: Optional[str] = None
    status: str  # normalized: created/authorized/captured/failed/processing/requires_action/refunded
    amount: Optional[int] = None
    currency: Optional[str] = None
    method: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    error_description: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class GatewayRefund(BaseModel):
    id: str
    payment_id: str
    amount: int
    status: str
