"""Email related Celery tasks"""
from __future__ import annotations

import asyncio
import smtplib
from functools import partial

from celery import shared_task

from ..utils.base_task import BaseTask
from core.config import settings
from core.logging_config import get_logger
from domain.payment.entity import PaymentStatus, REFUND_STATUSES
from infrastructure.database import task_session_factory
from infrastructure.external.mail import SMTPMailer, render_failure, render_success
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)

KIND_SUCCESS = "success"
KIND_FAILURE = "failure"


def _kind_for_status(status: PaymentStatus) -> str | None:
    if status == PaymentStatus.SUCCESS or status in REFUND_STATUSES:
        return KIND_SUCCESS
    if status == PaymentStatus.FAILED:
        return KIND_FAILURE
    return None


async def deliver_payment_email(uow_factory, mailer: SMTPMailer, payment_id: int, kind: str) -> bool:
    """Claim, render and send one payment notification. Returns True when an email went out.

    The claim is an atomic conditional update on `email_sent`, so concurrent
    workers (or a duplicate enqueue) send at most one email. A delivery error
    releases the claim and re-raises so Celery retries and the sweep can pick
    the payment up again.
    """
    async with uow_factory() as uow:
        payment = await uow.payment_repository.get_by_id(payment_id)
        if payment is None:
            logger.warning("payment_email_payment_missing", payment_id=payment_id)
            return False
        if _kind_for_status(payment.status) != kind:
            logger.info("payment_email_outdated", payment_id=payment_id, kind=kind, status=payment.status.value)
            return False
        if not await uow.payment_repository.claim_email(payment_id):
            logger.info("payment_email_already_sent", payment_id=payment_id, kind=kind)
            return False

    render = render_success if kind == KIND_SUCCESS else render_failure
    subject, text, html = render(
        payment,
        app_name=settings.mail.from_name,
        support_email=settings.mail.support_email,
        retry_url=settings.mail.retry_url,
    )
    try:
        await asyncio.to_thread(mailer.send, to=payment.customer_email, subject=subject, text=text, html=html)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("payment_email_send_failed", payment_id=payment_id, kind=kind, error=str(exc))
        async with uow_factory() as uow:
            await uow.payment_repository.release_email(payment_id)
        raise

    logger.info("payment_email_delivered", payment_id=payment_id, kind=kind)
    return True


@shared_task(
    name="infrastructure.tasks.tasks.email.send_payment_email",
    bind=True,
    base=BaseTask,
    autoretry_for=(smtplib.SMTPException, OSError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_payment_email(self, payment_id: int, kind: str) -> bool:
    """Send the success/failure email for a settled payment."""
    async def _run() -> bool:
        async with task_session_factory() as session_factory:
            return await deliver_payment_email(
                partial(SQLAlchemyUnitOfWork, session_factory),
                SMTPMailer(settings.mail),
                payment_id,
                kind,
            )

    return asyncio.run(_run())
