"""
Payment endpoints: checkout, manual entries, refunds and ledger queries.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from leasedesk.auth.core import UserInfo, get_current_user, require_admin
from leasedesk.billing.dependencies import get_processor_gateway
from leasedesk.billing.payments.gateway import ProcessorGateway
from leasedesk.billing.payments.service import PaymentService, RefundedButUnpersisted
from leasedesk.billing.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    ManualPaymentRequest,
    MessageResponse,
    PaymentActionResponse,
    PaymentResponse,
    PaymentUpdateRequest,
    RefundRequest,
    RefundResponse,
    RefundWarningResponse,
    RentOverviewResponse,
    SavedMethodSummary,
    TenantPaymentsResponse,
    TenantPaymentsSummary,
    TenantRentStatusResponse,
)
from leasedesk.db import get_async_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/billing/payments", tags=["Billing - Payments"])


def get_payment_service(
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> PaymentService:
    """PaymentService for read and admin-edit endpoints (no processor calls)."""
    return PaymentService(db)


def get_processor_payment_service(
    db: Annotated[AsyncSession, Depends(get_async_session)],
    gateway: Annotated[ProcessorGateway, Depends(get_processor_gateway)],
) -> PaymentService:
    """PaymentService wired to the payment processor."""
    return PaymentService(db, gateway=gateway)


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout_intent(
    request: CheckoutRequest,
    current_user: Annotated[UserInfo, Depends(get_current_user)],
    service: Annotated[PaymentService, Depends(get_processor_payment_service)],
) -> CheckoutResponse:
    """
    Create a processor payment intent for a tenant's charge.

    Only the tenant themselves or an admin may start a payment.
    """
    result = await service.create_checkout_intent(current_user, request)
    return CheckoutResponse(
        payment_intent_id=result.payment_intent_id,
        client_secret=result.client_secret,
        payment_id=result.payment_id,
        amount=result.amount,
        estimated_fee=result.estimated_fee,
    )


@router.post("/manual", response_model=PaymentActionResponse)
async def record_manual_payment(
    request: ManualPaymentRequest,
    admin: Annotated[UserInfo, Depends(require_admin)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentActionResponse:
    """Record a cash, check or money order payment. Admin only."""
    payment = await service.record_manual_payment(admin, request)
    return PaymentActionResponse(
        message="Payment recorded successfully",
        payment=PaymentResponse.model_validate(payment),
    )


@router.post(
    "/refund",
    response_model=RefundResponse,
    responses={status.HTTP_207_MULTI_STATUS: {"model": RefundWarningResponse}},
)
async def refund_payment(
    request: RefundRequest,
    admin: Annotated[UserInfo, Depends(require_admin)],
    service: Annotated[PaymentService, Depends(get_processor_payment_service)],
) -> RefundResponse | JSONResponse:
    """
    Refund a completed processor payment. Admin only.

    Returns 207 when the refund went through at the processor but the ledger
    could not be updated; the payment must then be corrected by hand.
    """
    outcome = await service.refund_payment(
        admin, request.payment_id, request.amount, request.reason
    )

    if isinstance(outcome, RefundedButUnpersisted):
        warning = RefundWarningResponse(
            warning=(
                "Refund was issued at the processor but the payment record could not be "
                "updated. Please update it manually."
            ),
            refund_id=outcome.refund_id,
            payment_id=outcome.payment_id,
        )
        return JSONResponse(
            status_code=status.HTTP_207_MULTI_STATUS, content=warning.model_dump(mode="json")
        )

    return RefundResponse(
        refund_id=outcome.refund_id,
        amount=outcome.amount,
        payment=PaymentResponse.model_validate(outcome.payment),
    )


@router.get("/tenant/{tenant_id}", response_model=TenantPaymentsResponse)
async def list_tenant_payments(
    tenant_id: str,
    current_user: Annotated[UserInfo, Depends(get_current_user)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
) -> TenantPaymentsResponse:
    """All payments for a tenant, newest first, with a summary."""
    payments, summary = await service.list_tenant_payments(current_user, tenant_id)

    def serialize(rows):
        return [PaymentResponse.model_validate(p) for p in rows]

    return TenantPaymentsResponse(
        payments=serialize(payments),
        summary=TenantPaymentsSummary(
            total_paid=summary.total_paid,
            total_pending=summary.total_pending,
            total_overdue=summary.total_overdue,
            total_failed=summary.total_failed,
            upcoming_payments=serialize(summary.upcoming_payments),
            overdue_payments=serialize(summary.overdue_payments),
            recent_payments=serialize(summary.recent_payments),
        ),
    )


@router.get("/overview", response_model=RentOverviewResponse)
async def rent_overview(
    admin: Annotated[UserInfo, Depends(require_admin)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
) -> RentOverviewResponse:
    """Current-month rent status for every active tenant. Admin only."""
    rows = await service.rent_overview()
    return RentOverviewResponse(
        tenants=[
            TenantRentStatusResponse(
                tenant_id=row.tenant.tenant_id,
                user_id=row.tenant.user_id,
                property_id=row.tenant.property_id,
                unit_number=row.tenant.unit_number,
                rent_amount=row.tenant.rent_amount,
                payment_due_date=row.payment_due_date,
                current_month_paid=row.current_month_paid,
                is_autopay=row.is_autopay,
                is_overdue=row.is_overdue,
                payment_methods=[
                    SavedMethodSummary.model_validate(m) for m in row.payment_methods
                ],
            )
            for row in rows
        ]
    )


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    current_user: Annotated[UserInfo, Depends(get_current_user)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentResponse:
    payment = await service.get_payment(current_user, payment_id)
    return PaymentResponse.model_validate(payment)


@router.patch("/{payment_id}", response_model=PaymentActionResponse)
async def update_payment(
    payment_id: str,
    request: PaymentUpdateRequest,
    admin: Annotated[UserInfo, Depends(require_admin)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentActionResponse:
    """Correct notes, payment date or payment type. Admin only."""
    payment = await service.update_payment(admin, payment_id, request)
    return PaymentActionResponse(
        message="Payment updated successfully",
        payment=PaymentResponse.model_validate(payment),
    )


@router.delete("/{payment_id}", response_model=MessageResponse)
async def delete_payment(
    payment_id: str,
    admin: Annotated[UserInfo, Depends(require_admin)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
) -> MessageResponse:
    """Permanently delete a payment. Admin only."""
    await service.delete_payment(admin, payment_id)
    logger.warning("billing.payment.deleted", payment_id=payment_id, admin_id=admin.user_id)
    return MessageResponse(message="Payment deleted successfully")
