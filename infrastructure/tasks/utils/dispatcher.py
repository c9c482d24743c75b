"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from ..config.celery import celery_app

SEND_PAYMENT_EMAIL = "infrastructure.tasks.tasks.email.send_payment_email"
SYNC_ORDER_STATUS = "payments.sync_order_status"


class TaskDispatcher:
    """Internal facade used by application layer to schedule tasks.

    Implements the application `PaymentNotifier` port.
    """

    def notify_success(self, payment_id: int) -> None:
        celery_app.send_task(SEND_PAYMENT_EMAIL, kwargs={"payment_id": payment_id, "kind": "success"})

    def notify_failure(self, payment_id: int) -> None:
        celery_app.send_task(SEND_PAYMENT_EMAIL, kwargs={"payment_id": payment_id, "kind": "failure"})

    def sync_order_status(self, order_id: str, provider: str | None = None) -> None:
        celery_app.send_task(SYNC_ORDER_STATUS, kwargs={"order_id": order_id, "provider": provider})
