"""
Billing Batch Runner - the monthly autopay job.

Each enrollment is charged in its own session and its result is collected as an
``EnrollmentOutcome``. One enrollment's bad data or processor error never stops
the others, and re-running the same period is safe: the duplicate-period
constraint turns a second attempt into a skip.
"""

import calendar
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leasedesk.billing.config import BillingConfig, get_billing_config
from leasedesk.billing.directory import BillableEnrollment, SqlTenantDirectory, TenantDirectory
from leasedesk.billing.enums import OutcomeStatus, PaymentStatus, PaymentType
from leasedesk.billing.exceptions import (
    DuplicatePaymentError,
    LedgerInconsistencyError,
    ProcessorError,
)
from leasedesk.billing.metrics import BillingMetrics, get_billing_metrics
from leasedesk.billing.money_utils import money_handler, to_minor_units
from leasedesk.billing.payments.gateway import ProcessorGateway
from leasedesk.billing.payments.repository import PaymentRecordStore
from leasedesk.db import get_session_maker

logger = structlog.get_logger(__name__)

MISSING_DATA_ERROR = "Missing tenant or payment method data"
NON_POSITIVE_AMOUNT_ERROR = "Invalid rent amount after discount"


@dataclass(frozen=True, slots=True)
class BillingPeriod:
    """A calendar month. Rent is due on its first day."""

    start: date
    end: date

    @classmethod
    def for_month(cls, day: date) -> "BillingPeriod":
        last_day = calendar.monthrange(day.year, day.month)[1]
        return cls(start=day.replace(day=1), end=day.replace(day=last_day))

    @classmethod
    def parse(cls, value: str) -> "BillingPeriod":
        """Parse ``YYYY-MM``."""
        try:
            year, month = (int(part) for part in value.split("-"))
            return cls.for_month(date(year, month, 1))
        except ValueError as e:
            raise ValueError(f"Invalid billing period: {value!r} (expected YYYY-MM)") from e

    @classmethod
    def current(cls) -> "BillingPeriod":
        return cls.for_month(datetime.now(UTC).date())

    @property
    def due_date(self) -> date:
        return self.start

    @property
    def label(self) -> str:
        return f"{self.start:%Y-%m}"


@dataclass(frozen=True, slots=True)
class EnrollmentOutcome:
    """What happened to one enrollment in a batch run."""

    enrollment_id: str
    tenant_id: str
    status: OutcomeStatus
    payment_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enrollment_id": self.enrollment_id,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "payment_id": self.payment_id,
            "error": self.error,
        }


@dataclass
class BatchRunSummary:
    period: BillingPeriod
    outcomes: list[EnrollmentOutcome] = field(default_factory=list)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def successful(self) -> int:
        return self._count(OutcomeStatus.CHARGED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def errors(self) -> list[dict[str, Any]]:
        """Failures plus skips that point at bad data, for operator review."""
        return [outcome.to_dict() for outcome in self.outcomes if outcome.error]

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_start": self.period.start.isoformat(),
            "period_end": self.period.end.isoformat(),
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class AutopayBatchRunner:
    """Charges every active autopay enrollment for a billing period."""

    def __init__(
        self,
        gateway: ProcessorGateway,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        directory_factory: Callable[[AsyncSession], TenantDirectory] = SqlTenantDirectory,
        config: BillingConfig | None = None,
        metrics: BillingMetrics | None = None,
    ) -> None:
        self.gateway = gateway
        self.session_factory = session_factory or get_session_maker()
        self.directory_factory = directory_factory
        self.config = config or get_billing_config()
        self.metrics = metrics or get_billing_metrics()

    async def run(self, period: BillingPeriod | None = None) -> BatchRunSummary:
        period = period or BillingPeriod.current()
        log = logger.bind(period=period.label)

        async with self.session_factory() as session:
            enrollments = await self.directory_factory(session).list_billable_enrollments()

        log.info("billing.autopay.run_started", enrollments=len(enrollments))

        summary = BatchRunSummary(period=period)
        for enrollment in enrollments:
            outcome = await self.process_enrollment(enrollment, period)
            summary.outcomes.append(outcome)
            self.metrics.record_autopay_outcome(outcome.status)

        log.info(
            "billing.autopay.run_completed",
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        return summary

    async def process_enrollment(
        self, enrollment: BillableEnrollment, period: BillingPeriod
    ) -> EnrollmentOutcome:
        """Charge one enrollment. Always returns an outcome, never raises."""
        try:
            return await self._charge(enrollment, period)
        except Exception as e:
            logger.exception(
                "billing.autopay.enrollment_error",
                enrollment_id=enrollment.enrollment_id,
                tenant_id=enrollment.tenant_id,
            )
            return EnrollmentOutcome(
                enrollment_id=enrollment.enrollment_id,
                tenant_id=enrollment.tenant_id,
                status=OutcomeStatus.FAILED,
                error=str(e) or type(e).__name__,
            )

    async def _charge(
        self, enrollment: BillableEnrollment, period: BillingPeriod
    ) -> EnrollmentOutcome:
        log = logger.bind(
            enrollment_id=enrollment.enrollment_id,
            tenant_id=enrollment.tenant_id,
            period=period.label,
        )

        def outcome(
            status: OutcomeStatus, payment_id: str | None = None, error: str | None = None
        ) -> EnrollmentOutcome:
            return EnrollmentOutcome(
                enrollment_id=enrollment.enrollment_id,
                tenant_id=enrollment.tenant_id,
                status=status,
                payment_id=payment_id,
                error=error,
            )

        if not enrollment.has_tenant or not enrollment.has_payment_method:
            log.warning("billing.autopay.missing_data")
            return outcome(OutcomeStatus.FAILED, error=MISSING_DATA_ERROR)

        base_rent = enrollment.base_rent or Decimal("0")
        amount = money_handler.subtract(base_rent, enrollment.discount)
        if amount <= 0:
            log.warning(
                "billing.autopay.non_positive_amount",
                base_rent=str(base_rent),
                discount=str(enrollment.discount),
            )
            return outcome(OutcomeStatus.SKIPPED, error=NON_POSITIVE_AMOUNT_ERROR)

        async with self.session_factory() as session:
            store = PaymentRecordStore(session)

            existing = await store.find_active_for_period(
                enrollment.tenant_id, period.start, period.end
            )
            if existing is not None:
                log.info("billing.autopay.already_billed", payment_id=existing.id)
                return outcome(OutcomeStatus.SKIPPED, payment_id=existing.id)

            try:
                payment = await store.insert_pending(
                    tenant_id=enrollment.tenant_id,
                    property_id=enrollment.property_id,
                    amount=amount,
                    payment_type=PaymentType.RENT,
                    payment_method=enrollment.instrument.payment_method,
                    due_date=period.due_date,
                    period_start=period.start,
                    period_end=period.end,
                    is_autopay=True,
                    notes=(
                        "Autopay - discount applied: "
                        f"{money_handler.format_money(enrollment.discount)}"
                    ),
                )
            except DuplicatePaymentError as e:
                # Lost the insert race to a concurrent run
                existing_id = e.context.get("existing_payment_id")
                log.info("billing.autopay.already_billed", payment_id=existing_id)
                return outcome(OutcomeStatus.SKIPPED, payment_id=existing_id)

            payment_id = payment.id
            amount_minor = to_minor_units(amount)
            self.metrics.record_payment_created(
                enrollment.tenant_id, amount_minor, source="autopay"
            )

            metadata = {
                "tenant_id": enrollment.tenant_id,
                "payment_id": payment_id,
                "property_id": enrollment.property_id,
                "unit_number": enrollment.unit_number or "",
                "payment_type": PaymentType.RENT.value,
                "period_start": period.start.isoformat(),
                "period_end": period.end.isoformat(),
                "is_autopay": "true",
                "discount_applied": f"{enrollment.discount:.2f}",
            }

            try:
                intent = await self.gateway.create_intent(
                    enrollment.customer_id,
                    amount_minor,
                    metadata,
                    payment_method_token=enrollment.payment_method_token,
                    off_session=True,
                )
            except ProcessorError as e:
                await store.transition(
                    payment_id, PaymentStatus.FAILED, note=f"Autopay failed: {e.message}"
                )
                self.metrics.record_status_change(PaymentStatus.FAILED, source="autopay")
                log.warning("billing.autopay.charge_failed", payment_id=payment_id, error=e.message)
                return outcome(OutcomeStatus.FAILED, payment_id=payment_id, error=e.message)
            except Exception as e:
                # The pending row must not outlive a failed intent call
                error = str(e) or type(e).__name__
                await store.transition(
                    payment_id, PaymentStatus.FAILED, note=f"Autopay failed: {error}"
                )
                self.metrics.record_status_change(PaymentStatus.FAILED, source="autopay")
                log.exception("billing.autopay.charge_error", payment_id=payment_id)
                return outcome(OutcomeStatus.FAILED, payment_id=payment_id, error=error)

            try:
                await store.transition(
                    payment_id, PaymentStatus.PROCESSING, intent_id=intent.intent_id
                )
            except SQLAlchemyError as e:
                await session.rollback()
                inconsistency = LedgerInconsistencyError(
                    "Payment intent was created but could not be recorded",
                    payment_id=payment_id,
                    processor_reference=intent.intent_id,
                )
                log.critical(
                    "billing.autopay.intent_not_recorded", error=str(e), **inconsistency.context
                )
                self.metrics.record_ledger_inconsistency("autopay")
                return outcome(
                    OutcomeStatus.FAILED, payment_id=payment_id, error=inconsistency.message
                )

            self.metrics.record_status_change(PaymentStatus.PROCESSING, source="autopay")
            log.info(
                "billing.autopay.charged",
                payment_id=payment_id,
                intent_id=intent.intent_id,
                amount=str(amount),
            )
            return outcome(OutcomeStatus.CHARGED, payment_id=payment_id)
