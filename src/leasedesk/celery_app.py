"""
Celery application configuration.

The autopay batch is scheduled here with celery beat; the worker runs the
same runner the HTTP trigger uses.
"""

from typing import Any

import structlog
from celery import Celery
from celery.schedules import crontab

from leasedesk.settings import settings

# Create Celery application
celery_app = Celery(
    "leasedesk_billing",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=["leasedesk.tasks"],
)

# Configure Celery settings
celery_app.conf.update(
    task_default_queue="default",
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.celery.timezone,
    enable_utc=True,
    result_expires=86400,  # 24 hours
    task_track_started=True,
    task_time_limit=settings.celery.task_time_limit,
    task_soft_time_limit=settings.celery.task_soft_time_limit,
    worker_prefetch_multiplier=1,
    task_acks_late=False,
)


@celery_app.on_after_finalize.connect  # type: ignore[misc]
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Schedule the monthly autopay run."""
    from leasedesk.tasks import run_autopay_batch_task

    run_day = settings.billing.autopay_run_day
    run_hour = settings.billing.autopay_run_hour
    sender.add_periodic_task(
        crontab(minute=0, hour=run_hour, day_of_month=run_day),
        run_autopay_batch_task.s(),
        name="billing-autopay-monthly-run",
    )

    logger = structlog.get_logger(__name__)
    logger.info(
        "celery.periodic_tasks.configured",
        tasks=["billing-autopay-monthly-run"],
        day_of_month=run_day,
        hour=run_hour,
    )
