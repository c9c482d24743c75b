"""
HMAC-SHA256 signature verification for gateway callbacks.

Signatures are lowercase hex digests over the raw request bytes. A mismatch is
a normal negative result; internal errors are logged and treated as a failed
verification.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Union

from core.logging_config import get_logger


logger = get_logger(__name__)


def compute_signature(body: Union[bytes, str], secret: str) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookVerifier:
    def __init__(self, secret: Optional[str]):
        self._secret = secret

    def verify(self, body: Union[bytes, str], signature: Optional[str]) -> bool:
        if not signature:
            logger.warning("signature_missing")
            return False
        try:
            if not self._secret:
                raise ValueError("signing secret not configured")
            expected = compute_signature(body, self._secret)
            return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii"))
        except (ValueError, TypeError, AttributeError, UnicodeError) as exc:
            logger.error("signature_verification_error", error=str(exc))
            return False

    def verify_checkout(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        """Checkout callback signature: HMAC over ``"{order_id}|{payment_id}"``."""
        return self.verify(f"{order_id}|{payment_id}", signature)
