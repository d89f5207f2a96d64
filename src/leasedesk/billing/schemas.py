"""
Pydantic schemas for the billing API.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leasedesk.billing.enums import (
    InstrumentType,
    PaymentMethodType,
    PaymentStatus,
    PaymentType,
)


class _PeriodMixin(BaseModel):
    period_start: date | None = Field(None, description="First day of the billing period")
    period_end: date | None = Field(None, description="Last day of the billing period")

    @model_validator(mode="after")
    def validate_period(self) -> "_PeriodMixin":
        """Period bounds come as a pair, in order."""
        if (self.period_start is None) != (self.period_end is None):
            raise ValueError("period_start and period_end must be provided together")
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


# ============================================================
# Payments
# ============================================================


class PaymentResponse(BaseModel):
    """A ledger row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    property_id: str
    amount: Decimal
    payment_type: PaymentType
    payment_method: PaymentMethodType
    status: PaymentStatus
    period_start: date | None = None
    period_end: date | None = None
    due_date: date
    processor_intent_id: str | None = None
    processor_charge_id: str | None = None
    processor_fee_amount: Decimal | None = None
    is_autopay: bool = False
    recorded_by: str | None = None
    payment_date: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class CheckoutRequest(_PeriodMixin):
    """Start a processor payment for a tenant."""

    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: str = Field(description="Tenant being charged")
    amount: Decimal = Field(gt=0, description="Amount in major units")
    payment_type: PaymentType = Field(PaymentType.RENT, description="What the payment is for")
    payment_method_id: str | None = Field(None, description="Saved payment method to charge")
    due_date: date | None = Field(None, description="Defaults to the first of next month")


class CheckoutResponse(BaseModel):
    payment_intent_id: str
    client_secret: str | None
    payment_id: str
    amount: Decimal
    estimated_fee: Decimal | None = Field(
        None, description="Estimated processor fee when the instrument is known"
    )


class ManualPaymentRequest(_PeriodMixin):
    """Record a cash, check or money order payment."""

    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: str
    amount: Decimal
    payment_type: PaymentType
    payment_method: PaymentMethodType
    payment_date: datetime
    notes: str | None = None


class RefundRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    payment_id: str
    amount: Decimal | None = Field(
        None, gt=0, description="Partial refund amount; full when omitted"
    )
    reason: str | None = None


class PaymentActionResponse(BaseModel):
    message: str
    payment: PaymentResponse


class MessageResponse(BaseModel):
    message: str


class RefundResponse(BaseModel):
    message: str = "Refund issued successfully"
    refund_id: str
    amount: Decimal
    payment: PaymentResponse


class RefundWarningResponse(BaseModel):
    """Refund issued at the processor but not recorded locally."""

    warning: str
    refund_id: str
    payment_id: str


class PaymentUpdateRequest(BaseModel):
    """Admin correction. Status is deliberately not editable."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    notes: str | None = Field(None, description="Appended to the payment's notes")
    payment_date: datetime | None = None
    payment_type: PaymentType | None = None


class TenantPaymentsSummary(BaseModel):
    total_paid: Decimal
    total_pending: Decimal
    total_overdue: Decimal
    total_failed: Decimal
    upcoming_payments: list[PaymentResponse]
    overdue_payments: list[PaymentResponse]
    recent_payments: list[PaymentResponse]


class TenantPaymentsResponse(BaseModel):
    payments: list[PaymentResponse]
    summary: TenantPaymentsSummary


# ============================================================
# Autopay
# ============================================================


class AutopayEnrollRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    payment_method_id: str
    discount_amount: Decimal | None = Field(
        None, ge=0, description="Defaults to the configured autopay discount"
    )


class AutopayEnrollmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    payment_method_id: str
    is_active: bool
    discount_amount: Decimal
    enrolled_at: datetime
    cancelled_at: datetime | None = None


class SavedMethodSummary(BaseModel):
    """Display metadata for a saved instrument. No processor tokens."""

    model_config = ConfigDict(from_attributes=True)

    method_id: str
    instrument: InstrumentType
    last4: str | None = None
    bank_name: str | None = None
    card_brand: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None
    is_default: bool = False


class TenantRentStatusResponse(BaseModel):
    tenant_id: str
    user_id: str
    property_id: str
    unit_number: str | None = None
    rent_amount: Decimal | None = None
    payment_due_date: date
    current_month_paid: bool
    is_autopay: bool
    is_overdue: bool
    payment_methods: list[SavedMethodSummary]


class RentOverviewResponse(BaseModel):
    tenants: list[TenantRentStatusResponse]


class AutopayStatusResponse(BaseModel):
    is_enrolled: bool
    enrollment: AutopayEnrollmentResponse | None = None
    payment_method: SavedMethodSummary | None = None


class AutopayActionResponse(BaseModel):
    message: str
    enrollment: AutopayEnrollmentResponse


class BatchRunRequest(BaseModel):
    period: str | None = Field(
        None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="Billing month as YYYY-MM"
    )


class BatchRunResponse(BaseModel):
    period_start: date
    period_end: date
    total: int
    successful: int
    failed: int
    skipped: int
    errors: list[dict[str, Any]]
