"""
Celery task definitions.
"""

import asyncio
from typing import Any

import structlog

from leasedesk.billing.autopay.runner import AutopayBatchRunner, BillingPeriod
from leasedesk.billing.payments.gateway import build_gateway
from leasedesk.celery_app import celery_app
from leasedesk.db import dispose_engine

logger = structlog.get_logger(__name__)


async def _run_autopay(period: str | None) -> dict[str, Any]:
    billing_period = BillingPeriod.parse(period) if period else None
    try:
        runner = AutopayBatchRunner(build_gateway())
        summary = await runner.run(billing_period)
    finally:
        await dispose_engine()
    return summary.to_dict()


@celery_app.task(name="billing.autopay.run_batch")
def run_autopay_batch_task(period: str | None = None) -> dict[str, Any]:
    """
    Run the monthly autopay batch.

    ``period`` is ``YYYY-MM``; the current month when omitted. The task is not
    retried automatically: re-running a period is safe, but an operator should
    look at the failures first.
    """
    result = asyncio.run(_run_autopay(period))
    logger.info(
        "billing.autopay.task_completed",
        period_start=result["period_start"],
        successful=result["successful"],
        failed=result["failed"],
        skipped=result["skipped"],
    )
    return result


__all__ = ["run_autopay_batch_task"]
