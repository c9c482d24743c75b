"""
Notification port: hands payment outcome notifications to a background worker.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PaymentNotifier(Protocol):
    """Queues customer notifications; must not block on delivery."""

    def notify_success(self, payment_id: int) -> None: ...

    def notify_failure(self, payment_id: int) -> None: ...
