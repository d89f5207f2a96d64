"""
Autopay endpoints: tenant self-service enrollment and the scheduled batch trigger.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leasedesk.auth.core import UserInfo, require_tenant, verify_cron_secret
from leasedesk.billing.autopay.runner import AutopayBatchRunner, BillingPeriod
from leasedesk.billing.autopay.service import AutopayService
from leasedesk.billing.dependencies import get_processor_gateway
from leasedesk.billing.exceptions import PaymentValidationError
from leasedesk.billing.payments.gateway import ProcessorGateway
from leasedesk.billing.schemas import (
    AutopayActionResponse,
    AutopayEnrollmentResponse,
    AutopayEnrollRequest,
    AutopayStatusResponse,
    BatchRunRequest,
    BatchRunResponse,
    SavedMethodSummary,
)
from leasedesk.db import get_async_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/billing/autopay", tags=["Billing - Autopay"])


def get_autopay_service(
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> AutopayService:
    return AutopayService(db)


def get_batch_runner(
    gateway: Annotated[ProcessorGateway, Depends(get_processor_gateway)],
) -> AutopayBatchRunner:
    """Runner with its own per-enrollment sessions from the global session maker."""
    return AutopayBatchRunner(gateway)


@router.post("/run", response_model=BatchRunResponse, dependencies=[Depends(verify_cron_secret)])
async def run_autopay_batch(
    runner: Annotated[AutopayBatchRunner, Depends(get_batch_runner)],
    request: Annotated[BatchRunRequest | None, Body()] = None,
) -> BatchRunResponse:
    """
    Charge every active autopay enrollment for a billing month.

    Called by the scheduler with the cron secret as a Bearer token. Defaults
    to the current month; safe to call again for a month already billed.
    """
    period = None
    if request is not None and request.period:
        try:
            period = BillingPeriod.parse(request.period)
        except ValueError as e:
            raise PaymentValidationError(str(e)) from e

    summary = await runner.run(period)
    return BatchRunResponse.model_validate(summary.to_dict())


@router.post("/enroll", response_model=AutopayActionResponse)
async def enroll_autopay(
    request: AutopayEnrollRequest,
    current_user: Annotated[UserInfo, Depends(require_tenant)],
    service: Annotated[AutopayService, Depends(get_autopay_service)],
) -> AutopayActionResponse:
    enrollment, message = await service.enroll(
        current_user.user_id, request.payment_method_id, request.discount_amount
    )
    return AutopayActionResponse(
        message=message, enrollment=AutopayEnrollmentResponse.model_validate(enrollment)
    )


@router.post("/cancel", response_model=AutopayActionResponse)
async def cancel_autopay(
    current_user: Annotated[UserInfo, Depends(require_tenant)],
    service: Annotated[AutopayService, Depends(get_autopay_service)],
) -> AutopayActionResponse:
    enrollment = await service.cancel(current_user.user_id)
    return AutopayActionResponse(
        message="Autopay cancelled successfully",
        enrollment=AutopayEnrollmentResponse.model_validate(enrollment),
    )


@router.get("/status", response_model=AutopayStatusResponse)
async def get_autopay_status(
    current_user: Annotated[UserInfo, Depends(require_tenant)],
    service: Annotated[AutopayService, Depends(get_autopay_service)],
) -> AutopayStatusResponse:
    """Current enrollment and the display details of its payment method."""
    status = await service.status(current_user.user_id)
    return AutopayStatusResponse(
        is_enrolled=status.is_enrolled,
        enrollment=(
            AutopayEnrollmentResponse.model_validate(status.enrollment)
            if status.enrollment is not None
            else None
        ),
        payment_method=(
            SavedMethodSummary.model_validate(status.payment_method)
            if status.payment_method is not None
            else None
        ),
    )
