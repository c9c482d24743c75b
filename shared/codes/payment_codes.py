"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Domain errors (2xxxx)
    PAYMENT_NOT_FOUND = 20101
    ORDER_NOT_FOUND = 20102
    PAYMENT_NOT_REFUNDABLE = 20103
    REFUND_EXCEEDS_PAYMENT = 20104
    PAYMENT_ALREADY_REFUNDED = 20105
    AMOUNT_OUT_OF_RANGE = 20106

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Provider payment status -> normalized gateway status understood by the reconciler
PROVIDER_STATUS_TO_INTERNAL = {
    "razorpay": {
        "created": "created",
        "authorized": "authorized",
        "captured": "captured",
        "failed": "failed",
        "refunded": "refunded",
    },
    "stripe": {
        "requires_payment_method": "created",
        "requires_confirmation": "created",
        "requires_action": "requires_action",
        "processing": "processing",
        "requires_capture": "authorized",
        "succeeded": "captured",
        "canceled": "failed",
    },
}

# Normalized gateway status -> reconciler event type
STATUS_TO_EVENT = {
    "authorized": "payment.authorized",
    "captured": "payment.captured",
    "failed": "payment.failed",
    "processing": "payment.processing",
    "requires_action": "payment.requires_action",
}
