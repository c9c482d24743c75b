"""
Base payment client implementing shared concerns: thread offloading, retry,
logging, status mapping.

Vendor SDKs (razorpay, stripe) are synchronous; calls are pushed to a worker
thread so the event loop stays free. Only idempotent reads go through the
retry helper; order creation and refunds are attempted once.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import PaymentSettings
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"
    # Transport-level errors worth retrying for idempotent reads; set by subclasses
    retryable_exceptions: tuple[type[BaseException], ...] = (ConnectionError, TimeoutError)

    def __init__(self, settings: PaymentSettings) -> None:
        self.settings = settings
        self._retry_cfg = {"max": settings.retry.max, "base": settings.retry.base_backoff}

    @property
    def key_id(self) -> Optional[str]:
        return None

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def _retry(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(self.retryable_exceptions),
            reraise=True,
        ):
            with attempt:
                return await self._call(fn, *args, **kwargs)

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
