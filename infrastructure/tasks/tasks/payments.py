"""
Celery tasks for payment compensation workflows: notification sweep and
gateway status sync for orders whose webhook never arrived.
"""
from __future__ import annotations

import asyncio
from functools import partial
from typing import Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from ..utils.dispatcher import TaskDispatcher
from application.services.payment_service import PaymentApplicationService
from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.database import task_session_factory
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.exceptions import PaymentRecoverableError
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


def _build_service(session_factory, provider: Optional[str] = None) -> PaymentApplicationService:
    return PaymentApplicationService(
        uow_factory=partial(SQLAlchemyUnitOfWork, session_factory),
        gateway=get_payment_gateway(provider, payment_settings),
        notifier=TaskDispatcher(),
        settings=payment_settings,
    )


@shared_task(name="payments.send_pending_emails", base=BaseTask)
def task_send_pending_emails(limit: int = 100) -> dict:
    async def _run() -> int:
        async with task_session_factory() as session_factory:
            return await _build_service(session_factory).send_pending_emails(limit=limit)

    dispatched = asyncio.run(_run())
    return {"dispatched": dispatched}


@shared_task(
    name="payments.sync_order_status",
    bind=True,
    base=BaseTask,
    max_retries=3,
    default_retry_delay=30,
)
def task_sync_order_status(self, order_id: str, provider: Optional[str] = None) -> dict:
    async def _run() -> int:
        async with task_session_factory() as session_factory:
            return await _build_service(session_factory, provider).sync_order_status(order_id)

    try:
        applied = asyncio.run(_run())
    except PaymentRecoverableError as exc:
        logger.warning("payment_status_sync_retry", order_id=order_id, error=exc.message)
        raise self.retry(exc=exc)
    logger.info("payment_status_synced", order_id=order_id, applied=applied)
    return {"applied": applied}
