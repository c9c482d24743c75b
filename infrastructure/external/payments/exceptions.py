"""
Exceptions for payment providers mapped to unified BusinessException variants.

PaymentProviderError surfaces as HTTP 500 with the provider message passed
through; PaymentSignatureError surfaces as HTTP 400 and is logged as a
security event by the global handler.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


def _merge(provider: str, provider_code: Optional[str], details: Optional[dict]) -> dict:
    merged = {"provider": provider}
    if provider_code is not None:
        merged["provider_code"] = provider_code
    if details:
        merged.update(details)
    return merged


class PaymentProviderError(BusinessException):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=_merge(provider, provider_code, details),
        )


class PaymentRecoverableError(BusinessException):
    """Transient provider failure (network, rate limit) after retries were exhausted."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.PROVIDER_RECOVERABLE,
            message=message,
            error_type="PaymentRecoverableError",
            details=_merge(provider, provider_code, details),
        )


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=_merge(provider, None, details),
        )
