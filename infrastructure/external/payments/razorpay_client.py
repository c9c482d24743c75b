"""
Razorpay Orders/Payments adapter using the official razorpay-python SDK.

Notes on SDK usage:
- `razorpay.Client(auth=(key_id, key_secret))` exposes resource helpers:
  `client.order.create`, `client.order.payments`, `client.payment.fetch`,
  `client.payment.refund`.
- Amounts are integers in paise. Orders are created with `payment_capture=1`
  so authorized payments are captured automatically.
- Webhooks carry `X-Razorpay-Signature`, an HMAC-SHA256 hex digest of the raw
  body keyed with the webhook secret (distinct from the API key secret).
"""
from __future__ import annotations

import json
from typing import Any, Optional

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError

from application.dtos.payments import GatewayOrder, GatewayPayment, GatewayRefund
from application.services.webhook_verifier import WebhookVerifier
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.payment.events import GatewayEvent, REFUND_PROCESSED
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)


logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"
EVENT_ID_HEADER = "X-Razorpay-Event-Id"
SDK_ERRORS = (BadRequestError, GatewayError, ServerError, requests.exceptions.RequestException)


def _header(headers: dict[str, Any], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


class _TimeoutSession(requests.Session):
    """requests session applying a default (connect, read) timeout to every SDK call."""

    def __init__(self, timeout: tuple[float, float]):
        super().__init__()
        self._timeout = timeout

    def request(self, method, url, **kwargs):  # type: ignore[override]
        kwargs.setdefault("timeout", self._timeout)
        return super().request(method, url, **kwargs)


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    return ((payload.get(name) or {}).get("entity")) or {}


class RazorpayClient(BasePaymentClient):
    provider = "razorpay"
    retryable_exceptions = (
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
        ServerError,
    )

    def __init__(self, settings: PaymentSettings, client: Optional[razorpay.Client] = None):
        super().__init__(settings)
        cfg = settings.razorpay
        if client is None and cfg.key_id and cfg.key_secret:
            timeouts = settings.timeouts
            client = razorpay.Client(
                session=_TimeoutSession((timeouts.connect, timeouts.read)),
                auth=(cfg.key_id, cfg.key_secret),
            )
        self._sdk = client
        self._checkout_verifier = WebhookVerifier(cfg.key_secret)
        self._webhook_verifier = WebhookVerifier(cfg.webhook_secret)

    @property
    def _client(self) -> razorpay.Client:
        if self._sdk is None:
            raise PaymentProviderError("RAZORPAY__KEY_ID / RAZORPAY__KEY_SECRET not configured", provider=self.provider)
        return self._sdk

    @property
    def key_id(self) -> Optional[str]:
        return self.settings.razorpay.key_id

    def _wrap(self, exc: Exception) -> Exception:
        if isinstance(exc, self.retryable_exceptions):
            return PaymentRecoverableError(str(exc), provider=self.provider)
        code = getattr(exc, "code", None)
        return PaymentProviderError(str(exc), provider=self.provider, provider_code=str(code) if code else None)

    def _to_payment(self, data: dict[str, Any]) -> GatewayPayment:
        card = data.get("card") or {}
        return GatewayPayment(
            id=str(data["id"]),
            order_id=data.get("order_id"),
            status=self._map_status(str(data.get("status", ""))),
            amount=data.get("amount"),
            currency=data.get("currency"),
            method=data.get("method"),
            card_brand=card.get("network"),
            card_last4=card.get("last4"),
            error_description=data.get("error_description"),
            raw=data,
        )

    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[dict[str, Any]] = None,
    ) -> GatewayOrder:
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
            "notes": notes or {},
        }
        try:
            order = await self._call(self._client.order.create, data=payload)
        except SDK_ERRORS as exc:
            logger.error("razorpay_order_create_failed", receipt=receipt, error=str(exc))
            raise self._wrap(exc) from exc
        self._log("razorpay_order_created", gateway_order_id=order.get("id"), receipt=receipt)
        return GatewayOrder(
            id=str(order["id"]),
            amount=int(order.get("amount", amount)),
            currency=str(order.get("currency", currency)),
            receipt=str(order.get("receipt", receipt)),
            status=str(order.get("status", "created")),
        )

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        try:
            data = await self._retry(self._client.payment.fetch, payment_id, {"expand[]": "card"})
        except SDK_ERRORS as exc:
            raise self._wrap(exc) from exc
        return self._to_payment(data)

    async def fetch_order_payments(self, order_id: str) -> list[GatewayPayment]:
        try:
            data = await self._retry(self._client.order.payments, order_id)
        except SDK_ERRORS as exc:
            raise self._wrap(exc) from exc
        return [self._to_payment(item) for item in (data.get("items") or [])]

    async def refund(
        self,
        payment_id: str,
        *,
        amount: int,
        notes: Optional[dict[str, Any]] = None,
    ) -> GatewayRefund:
        try:
            refund = await self._call(
                self._client.payment.refund,
                payment_id,
                {"amount": amount, "notes": notes or {}},
            )
        except SDK_ERRORS as exc:
            logger.error("razorpay_refund_failed", gateway_payment_id=payment_id, error=str(exc))
            raise self._wrap(exc) from exc
        self._log("razorpay_refund_created", gateway_payment_id=payment_id, gateway_refund_id=refund.get("id"))
        return GatewayRefund(
            id=str(refund["id"]),
            payment_id=str(refund.get("payment_id", payment_id)),
            amount=int(refund.get("amount", amount)),
            status=str(refund.get("status", "processed")),
        )

    def verify_checkout_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return self._checkout_verifier.verify_checkout(order_id, payment_id, signature)

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> GatewayEvent:
        signature = _header(headers, SIGNATURE_HEADER)
        if not signature:
            raise PaymentSignatureError(f"Missing {SIGNATURE_HEADER} header", provider=self.provider)
        if not self._webhook_verifier.verify(body, signature):
            raise PaymentSignatureError("Invalid webhook signature", provider=self.provider)

        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PaymentProviderError("Malformed webhook payload", provider=self.provider) from exc

        event_type = str(data.get("event", ""))
        payload = data.get("payload") or {}
        payment = _entity(payload, "payment")
        card = payment.get("card") or {}
        event = GatewayEvent(
            type=event_type,
            provider=self.provider,
            id=_header(headers, EVENT_ID_HEADER),
            gateway_order_id=payment.get("order_id") or _entity(payload, "order").get("id"),
            gateway_payment_id=payment.get("id"),
            amount=payment.get("amount"),
            method=payment.get("method"),
            card_brand=card.get("network"),
            card_last4=card.get("last4"),
            error_description=payment.get("error_description"),
            raw=data,
        )
        if event_type == REFUND_PROCESSED:
            refund = _entity(payload, "refund")
            event.gateway_refund_id = refund.get("id")
            event.gateway_payment_id = refund.get("payment_id") or event.gateway_payment_id
            event.amount = refund.get("amount")
        return event
