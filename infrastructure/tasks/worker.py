"""Entry point for running a payment worker with the embedded beat scheduler.

Production deployments usually run `celery -A infrastructure.tasks worker`
and a separate `celery -A infrastructure.tasks beat`; this script runs both in
one process for local use so the pending-email sweep fires without extra setup.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(argv=[
        "worker",
        "--beat",
        "--hostname=payments@%h",
        "--queues=high,default,low",
        "--loglevel=INFO",
    ])


if __name__ == "__main__":
    main()
