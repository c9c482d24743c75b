"""Celery beat schedule configuration.

Keeping the structure close to the Celery docs makes copying snippets
straightforward for new periodic jobs.
"""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    # Re-queue notifications that were never sent (enqueue failure, SMTP outage)
    "payments-send-pending-emails": {
        "task": "payments.send_pending_emails",
        "schedule": settings.PENDING_EMAIL_SWEEP_SECONDS,
        "kwargs": {"limit": 100},
    },
}
