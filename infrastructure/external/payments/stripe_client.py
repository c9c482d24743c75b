"""
Stripe PaymentIntents adapter using the official stripe-python SDK.

Notes on SDK usage:
- A PaymentIntent plays the role of both the gateway order and the gateway
  payment: its id is stored as `gateway_order_id` and backfilled as
  `gateway_payment_id` once the intent settles.
- Idempotency keys are supplied via the `idempotency_key` kwarg; the receipt
  number is used so a retried create never opens two intents.
- Webhook verification uses `stripe.WebhookSignature.verify_header` with the
  `Stripe-Signature` header; the verified raw body is then decoded as JSON,
  so a malformed body with a valid signature is a provider error, not a
  signature error.
- There is no checkout signature: clients confirm via `confirm(payment_id)`.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import stripe

from application.dtos.payments import GatewayOrder, GatewayPayment, GatewayRefund
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.payment.events import (
    GatewayEvent,
    PAYMENT_AUTHORIZED,
    PAYMENT_CAPTURED,
    PAYMENT_FAILED,
    PAYMENT_PROCESSING,
    PAYMENT_REQUIRES_ACTION,
    REFUND_PROCESSED,
)
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)


logger = get_logger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"

# Stripe event type -> reconciler event type
EVENT_TYPE_MAP = {
    "payment_intent.succeeded": PAYMENT_CAPTURED,
    "payment_intent.amount_capturable_updated": PAYMENT_AUTHORIZED,
    "payment_intent.payment_failed": PAYMENT_FAILED,
    # no separate cancel transition: a canceled intent is recorded as FAILED
    "payment_intent.canceled": PAYMENT_FAILED,
    "payment_intent.processing": PAYMENT_PROCESSING,
    "payment_intent.requires_action": PAYMENT_REQUIRES_ACTION,
    "refund.created": REFUND_PROCESSED,
    "refund.updated": REFUND_PROCESSED,
}


def _header(headers: dict[str, Any], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class StripeClient(BasePaymentClient):
    provider = "stripe"
    retryable_exceptions = (
        stripe.APIConnectionError,
        stripe.RateLimitError,
    )

    def __init__(self, settings: PaymentSettings):
        super().__init__(settings)
        if settings.stripe.secret_key:
            stripe.api_key = settings.stripe.secret_key
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=settings.timeouts.total)

    @property
    def key_id(self) -> Optional[str]:
        return self.settings.stripe.publishable_key

    def _wrap(self, exc: Exception) -> Exception:
        code = _get(exc, "code")
        if isinstance(exc, self.retryable_exceptions):
            return PaymentRecoverableError(str(exc), provider=self.provider, provider_code=code)
        return PaymentProviderError(
            getattr(exc, "user_message", None) or str(exc),
            provider=self.provider,
            provider_code=code,
        )

    def _to_payment(self, pi: Any) -> GatewayPayment:
        charge = _get(pi, "latest_charge")
        details = _get(charge, "payment_method_details") if not isinstance(charge, str) else None
        card = _get(details, "card")
        error = _get(pi, "last_payment_error")
        return GatewayPayment(
            id=str(_get(pi, "id")),
            order_id=str(_get(pi, "id")),
            status=self._map_status(str(_get(pi, "status", ""))),
            amount=_get(pi, "amount"),
            currency=(_get(pi, "currency") or "").upper() or None,
            method=_get(details, "type") or "card",
            card_brand=_get(card, "brand"),
            card_last4=_get(card, "last4"),
            error_description=_get(error, "message"),
        )

    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[dict[str, Any]] = None,
    ) -> GatewayOrder:
        metadata = dict(notes or {})
        metadata.setdefault("receipt", receipt)
        try:
            pi = await self._call(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency.lower(),
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=receipt,
            )
        except stripe.StripeError as exc:
            logger.error("stripe_intent_create_failed", receipt=receipt, error=str(exc))
            raise self._wrap(exc) from exc
        self._log("stripe_intent_created", gateway_order_id=_get(pi, "id"), receipt=receipt)
        return GatewayOrder(
            id=str(_get(pi, "id")),
            amount=int(_get(pi, "amount", amount)),
            currency=str(_get(pi, "currency", currency)).upper(),
            receipt=receipt,
            status=self._map_status(str(_get(pi, "status", ""))),
            client_secret=_get(pi, "client_secret"),
        )

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        try:
            pi = await self._retry(stripe.PaymentIntent.retrieve, payment_id, expand=["latest_charge"])
        except stripe.StripeError as exc:
            raise self._wrap(exc) from exc
        return self._to_payment(pi)

    async def fetch_order_payments(self, order_id: str) -> list[GatewayPayment]:
        return [await self.fetch_payment(order_id)]

    async def refund(
        self,
        payment_id: str,
        *,
        amount: int,
        notes: Optional[dict[str, Any]] = None,
    ) -> GatewayRefund:
        try:
            refund = await self._call(
                stripe.Refund.create,
                payment_intent=payment_id,
                amount=amount,
                metadata=notes or {},
            )
        except stripe.StripeError as exc:
            logger.error("stripe_refund_failed", gateway_payment_id=payment_id, error=str(exc))
            raise self._wrap(exc) from exc
        self._log("stripe_refund_created", gateway_payment_id=payment_id, gateway_refund_id=_get(refund, "id"))
        return GatewayRefund(
            id=str(_get(refund, "id")),
            payment_id=payment_id,
            amount=int(_get(refund, "amount", amount)),
            status=str(_get(refund, "status", "")),
        )

    def verify_checkout_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        logger.warning("stripe_checkout_signature_unsupported", gateway_order_id=order_id)
        return False

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> GatewayEvent:
        secret = self.settings.stripe.webhook_secret
        if not secret:
            raise PaymentSignatureError("Missing STRIPE__WEBHOOK_SECRET", provider=self.provider)
        sig = _header(headers, SIGNATURE_HEADER)
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PaymentSignatureError("Webhook body is not valid UTF-8", provider=self.provider) from exc
        try:
            stripe.WebhookSignature.verify_header(
                payload,
                sig,
                secret,
                tolerance=self.settings.webhook.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise PaymentProviderError("Malformed webhook payload", provider=self.provider) from exc

        stripe_type = str(data.get("type", ""))
        obj = (data.get("data") or {}).get("object") or {}
        event = GatewayEvent(
            type=EVENT_TYPE_MAP.get(stripe_type, stripe_type),
            provider=self.provider,
            id=data.get("id"),
            raw=data,
        )

        if event.type == REFUND_PROCESSED:
            if obj.get("status") != "succeeded":
                # 未完成的退款按未知事件处理
                event.type = stripe_type
            event.gateway_refund_id = obj.get("id")
            event.gateway_payment_id = obj.get("payment_intent")
            event.amount = obj.get("amount")
            return event

        error = obj.get("last_payment_error") or {}
        card = ((error.get("payment_method") or {}).get("card")) or {}
        event.gateway_order_id = obj.get("id")
        event.gateway_payment_id = obj.get("id")
        event.amount = obj.get("amount")
        event.error_description = error.get("message")
        event.card_brand = card.get("brand")
        event.card_last4 = card.get("last4")
        event.method = (obj.get("payment_method_types") or [None])[0]
        return event
