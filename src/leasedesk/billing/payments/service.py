"""
Payment service: tenant checkout, admin manual entries, refunds and queries.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leasedesk.auth.core import UserInfo
from leasedesk.billing.autopay.service import AutopayService
from leasedesk.billing.config import BillingConfig, get_billing_config
from leasedesk.billing.directory import (
    PaymentMethodStore,
    SavedMethod,
    SqlPaymentMethodStore,
    SqlTenantDirectory,
    TenantDirectory,
    TenantRecord,
)
from leasedesk.billing.enums import (
    PaymentMethodType,
    PaymentStatus,
    PaymentType,
)
from leasedesk.billing.exceptions import (
    BillingAuthorizationError,
    DuplicatePaymentError,
    LedgerInconsistencyError,
    PaymentMethodNotFoundError,
    PaymentNotFoundError,
    PaymentValidationError,
    ProcessorError,
    RefundNotAllowedError,
    TenantNotFoundError,
)
from leasedesk.billing.metrics import BillingMetrics, get_billing_metrics
from leasedesk.billing.models import PaymentEntity
from leasedesk.billing.money_utils import (
    calculate_processor_fee,
    from_minor_units,
    money_handler,
    to_minor_units,
)
from leasedesk.billing.payments.gateway import ProcessorGateway
from leasedesk.billing.payments.repository import PaymentRecordStore
from leasedesk.billing.schemas import (
    CheckoutRequest,
    ManualPaymentRequest,
    PaymentUpdateRequest,
)
from leasedesk.logging import log_audit_event

logger = structlog.get_logger(__name__)

# Largest accepted difference between the requested and expected checkout amount
AMOUNT_TOLERANCE = Decimal("0.01")

OUTSTANDING_STATUSES = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED}
)

# Unpaid rent is overdue once this day of the month has passed
RENT_GRACE_DAY = 5


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    payment_intent_id: str
    client_secret: str | None
    payment_id: str
    amount: Decimal
    estimated_fee: Decimal | None = None


@dataclass(frozen=True, slots=True)
class RefundSucceeded:
    """Refund issued and recorded."""

    refund_id: str
    amount: Decimal
    payment: PaymentEntity


@dataclass(frozen=True, slots=True)
class RefundedButUnpersisted:
    """Refund issued at the processor; the local ledger still disagrees."""

    refund_id: str
    payment_id: str
    error: str


type RefundOutcome = RefundSucceeded | RefundedButUnpersisted


@dataclass(frozen=True, slots=True)
class PaymentSummary:
    total_paid: Decimal
    total_pending: Decimal
    total_overdue: Decimal
    total_failed: Decimal
    upcoming_payments: list[PaymentEntity]
    overdue_payments: list[PaymentEntity]
    recent_payments: list[PaymentEntity]


def summarize_payments(
    payments: list[PaymentEntity], today: date, recent_limit: int = 10
) -> PaymentSummary:
    """Totals and buckets for a tenant's payment history (newest first)."""

    def total(rows: list[PaymentEntity]) -> Decimal:
        return sum((p.amount for p in rows), Decimal("0.00"))

    outstanding = [p for p in payments if p.status in OUTSTANDING_STATUSES]
    overdue = [p for p in outstanding if p.due_date < today]
    upcoming = [p for p in outstanding if p.due_date >= today]

    return PaymentSummary(
        total_paid=total([p for p in payments if p.status == PaymentStatus.COMPLETED]),
        total_pending=total(
            [p for p in payments if p.status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING)]
        ),
        total_overdue=total(overdue),
        total_failed=total([p for p in payments if p.status == PaymentStatus.FAILED]),
        upcoming_payments=upcoming,
        overdue_payments=overdue,
        recent_payments=payments[:recent_limit],
    )


@dataclass(frozen=True, slots=True)
class TenantRentStatus:
    """One row of the admin rent collection overview."""

    tenant: TenantRecord
    payment_due_date: date
    current_month_paid: bool
    is_autopay: bool
    is_overdue: bool
    payment_methods: list[SavedMethod]


def _first_of_month(day: date, months_ahead: int = 0) -> date:
    month_index = day.month - 1 + months_ahead
    return date(day.year + month_index // 12, month_index % 12 + 1, 1)


class PaymentService:
    """Checkout, manual recording, refunds and ledger queries."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: ProcessorGateway | None = None,
        tenants: TenantDirectory | None = None,
        methods: PaymentMethodStore | None = None,
        config: BillingConfig | None = None,
        metrics: BillingMetrics | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.store = PaymentRecordStore(session)
        self.tenants = tenants or SqlTenantDirectory(session)
        self.methods = methods or SqlPaymentMethodStore(session)
        self.config = config or get_billing_config()
        self.metrics = metrics or get_billing_metrics()
        self.autopay = AutopayService(session, self.tenants, self.methods, self.config)

    def _require_gateway(self) -> ProcessorGateway:
        if self.gateway is None:
            raise RuntimeError("PaymentService was built without a processor gateway")
        return self.gateway

    async def _tenant_or_raise(self, tenant_id: str) -> TenantRecord:
        tenant = await self.tenants.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFoundError("Tenant not found", tenant_id=tenant_id)
        return tenant

    @staticmethod
    def _authorize(user: UserInfo, tenant: TenantRecord) -> None:
        if not user.is_admin and tenant.user_id != user.user_id:
            raise BillingAuthorizationError(tenant_id=tenant.tenant_id)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_checkout_intent(
        self, user: UserInfo, request: CheckoutRequest
    ) -> CheckoutResult:
        """
        Create a pending payment and a processor intent for it.

        Raises:
            PaymentValidationError: Amount does not match what the tenant owes
            DuplicatePaymentError: A live payment already covers the period
            ProcessorError: Intent creation failed; the payment is marked failed
        """
        gateway = self._require_gateway()
        tenant = await self._tenant_or_raise(request.tenant_id)
        self._authorize(user, tenant)

        amount = money_handler.create_money(request.amount).amount
        if amount <= 0:
            raise PaymentValidationError(
                "Amount must be greater than 0", context={"amount": str(request.amount)}
            )
        if request.payment_type == PaymentType.RENT:
            await self._check_rent_amount(tenant, amount)

        if request.period_start and request.period_end:
            existing = await self.store.find_active_for_period(
                tenant.tenant_id, request.period_start, request.period_end
            )
            if existing is not None:
                raise DuplicatePaymentError(
                    "A payment already exists for this period",
                    tenant_id=tenant.tenant_id,
                    existing_payment_id=existing.id,
                    existing_status=existing.status.value,
                )

        method_token = None
        instrument = None
        payment_method = PaymentMethodType.PROCESSOR_CARD
        if request.payment_method_id:
            method = await self.methods.get_method(request.payment_method_id, tenant.user_id)
            if method is None or not method.is_active:
                raise PaymentMethodNotFoundError(
                    "Payment method not found or invalid",
                    payment_method_id=request.payment_method_id,
                )
            method_token = method.processor_payment_method_id
            instrument = method.instrument
            payment_method = instrument.payment_method
            customer_id = method.processor_customer_id
        else:
            is_owner = tenant.user_id == user.user_id
            customer_id = await gateway.get_or_create_customer(
                self.methods,
                tenant.user_id,
                user.email if is_owner else None,
                user.full_name if is_owner else None,
            )

        payment = await self.store.insert_pending(
            tenant_id=tenant.tenant_id,
            property_id=tenant.property_id,
            amount=amount,
            payment_type=request.payment_type,
            payment_method=payment_method,
            due_date=request.due_date or _first_of_month(datetime.now(UTC).date(), 1),
            period_start=request.period_start,
            period_end=request.period_end,
        )
        payment_id = payment.id
        amount_minor = to_minor_units(amount)
        self.metrics.record_payment_created(tenant.tenant_id, amount_minor, source="checkout")

        metadata = {
            "payment_id": payment_id,
            "tenant_id": tenant.tenant_id,
            "property_id": tenant.property_id,
            "payment_type": request.payment_type.value,
            "user_id": user.user_id,
        }
        if request.period_start and request.period_end:
            metadata["period_start"] = request.period_start.isoformat()
            metadata["period_end"] = request.period_end.isoformat()

        try:
            with self.metrics.trace_payment_operation("checkout", payment_id):
                intent = await gateway.create_intent(
                    customer_id, amount_minor, metadata, payment_method_token=method_token
                )
        except Exception as e:
            error = e.message if isinstance(e, ProcessorError) else str(e) or type(e).__name__
            await self.store.transition(
                payment_id, PaymentStatus.FAILED, note=f"Checkout failed: {error}"
            )
            self.metrics.record_status_change(PaymentStatus.FAILED, source="checkout")
            raise

        try:
            await self.store.transition(
                payment_id, PaymentStatus.PROCESSING, intent_id=intent.intent_id
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.critical(
                "billing.checkout.intent_not_recorded",
                payment_id=payment_id,
                intent_id=intent.intent_id,
                error=str(e),
            )
            self.metrics.record_ledger_inconsistency("checkout")
            raise LedgerInconsistencyError(
                "Payment intent was created but could not be recorded",
                payment_id=payment_id,
                processor_reference=intent.intent_id,
            ) from e

        estimated_fee = None
        if instrument is not None:
            estimated_fee = from_minor_units(
                calculate_processor_fee(amount_minor, instrument, self.config.fees)
            )

        logger.info(
            "billing.checkout.intent_created",
            payment_id=payment_id,
            intent_id=intent.intent_id,
            tenant_id=tenant.tenant_id,
        )
        return CheckoutResult(
            payment_intent_id=intent.intent_id,
            client_secret=intent.client_secret,
            payment_id=payment_id,
            amount=amount,
            estimated_fee=estimated_fee,
        )

    async def _check_rent_amount(self, tenant: TenantRecord, requested: Decimal) -> None:
        expected = tenant.rent_amount or Decimal("0")
        enrollment = await self.autopay.get_active_enrollment(tenant.tenant_id)
        if enrollment is not None:
            expected = money_handler.subtract(expected, enrollment.discount_amount)

        if abs(requested - expected) > AMOUNT_TOLERANCE:
            raise PaymentValidationError(
                "Payment amount does not match expected amount",
                context={"expected": str(expected), "requested": str(requested)},
            )

    # ------------------------------------------------------------------
    # Manual recording
    # ------------------------------------------------------------------

    async def record_manual_payment(
        self, admin: UserInfo, request: ManualPaymentRequest
    ) -> PaymentEntity:
        """Record a cash, check or money order payment, born completed."""
        if not request.payment_method.is_manual:
            raise PaymentValidationError(
                "Invalid payment method for manual payment",
                context={"payment_method": request.payment_method.value},
            )
        amount = money_handler.create_money(request.amount).amount
        if amount <= 0:
            raise PaymentValidationError(
                "Amount must be greater than 0", context={"amount": str(request.amount)}
            )

        tenant = await self._tenant_or_raise(request.tenant_id)

        payment_date = request.payment_date
        if payment_date.tzinfo is None:
            payment_date = payment_date.replace(tzinfo=UTC)

        payment = await self.store.insert_completed(
            tenant_id=tenant.tenant_id,
            property_id=tenant.property_id,
            amount=amount,
            payment_type=request.payment_type,
            payment_method=request.payment_method,
            payment_date=payment_date,
            due_date=_first_of_month(datetime.now(UTC).date()),
            recorded_by=admin.user_id,
            period_start=request.period_start,
            period_end=request.period_end,
            notes=request.notes,
        )

        self.metrics.record_payment_created(
            tenant.tenant_id, to_minor_units(amount), source="manual"
        )
        log_audit_event(
            "billing.payment.manual_recorded",
            user_id=admin.user_id,
            resource_type="payment",
            resource_id=payment.id,
            tenant_id=tenant.tenant_id,
            amount=str(amount),
            payment_method=request.payment_method.value,
        )
        return payment

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def refund_payment(
        self,
        admin: UserInfo,
        payment_id: str,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> RefundOutcome:
        """
        Refund a completed processor payment.

        Every eligibility check runs before the processor is contacted. Once the
        processor has refunded, a failure to record it locally is returned as
        ``RefundedButUnpersisted`` rather than raised.
        """
        gateway = self._require_gateway()
        payment = await self.store.get_or_raise(payment_id)

        if payment.status == PaymentStatus.REFUNDED:
            raise RefundNotAllowedError(
                "Payment has already been refunded", payment_id, payment.status.value
            )
        if payment.status != PaymentStatus.COMPLETED:
            raise RefundNotAllowedError(
                "Can only refund completed payments", payment_id, payment.status.value
            )
        if payment.payment_method.is_manual:
            raise RefundNotAllowedError(
                "Can only refund processor payments. Manual payments must be refunded offline.",
                payment_id,
                payment.status.value,
            )
        if not payment.processor_intent_id:
            raise RefundNotAllowedError(
                "No processor payment intent found for this payment",
                payment_id,
                payment.status.value,
            )

        original_amount = payment.amount
        requested = original_amount if amount is None else amount
        refund_amount = money_handler.create_money(requested).amount
        if refund_amount <= 0:
            raise PaymentValidationError(
                "Invalid refund amount", context={"amount": str(requested)}
            )
        if refund_amount > original_amount:
            raise PaymentValidationError(
                "Refund amount cannot exceed payment amount",
                context={"amount": str(requested), "original_amount": str(original_amount)},
            )

        tenant_id = payment.tenant_id
        intent_id = payment.processor_intent_id

        with self.metrics.trace_payment_operation("refund", payment_id):
            receipt = await gateway.refund(
                intent_id,
                to_minor_units(refund_amount),
                reason,
                metadata={"payment_id": payment_id, "refunded_by": admin.user_id},
            )

        note = (
            f"Refunded: {money_handler.format_money(refund_amount)} on "
            f"{datetime.now(UTC).date().isoformat()}. "
            f"Reason: {reason or 'No reason provided'}. Refund ID: {receipt.refund_id}"
        )
        try:
            applied = await self.store.transition(payment_id, PaymentStatus.REFUNDED, note=note)
            current = await self.store.get(payment_id)
        except SQLAlchemyError as e:
            await self.session.rollback()
            return self._unpersisted_refund(receipt.refund_id, payment_id, str(e))

        # The charge.refunded webhook may have recorded the refund first
        if current is None or (not applied and current.status != PaymentStatus.REFUNDED):
            status = current.status.value if current else "deleted"
            return self._unpersisted_refund(
                receipt.refund_id, payment_id, f"Payment is now {status}"
            )

        self.metrics.record_refund(tenant_id, to_minor_units(refund_amount))
        self.metrics.record_status_change(PaymentStatus.REFUNDED, source="refund")
        log_audit_event(
            "billing.payment.refunded",
            user_id=admin.user_id,
            resource_type="payment",
            resource_id=payment_id,
            refund_id=receipt.refund_id,
            amount=str(refund_amount),
            reason=reason,
        )
        return RefundSucceeded(refund_id=receipt.refund_id, amount=refund_amount, payment=current)

    def _unpersisted_refund(
        self, refund_id: str, payment_id: str, error: str
    ) -> RefundedButUnpersisted:
        logger.critical(
            "billing.refund.not_persisted",
            payment_id=payment_id,
            refund_id=refund_id,
            error=error,
        )
        self.metrics.record_ledger_inconsistency("refund")
        return RefundedButUnpersisted(refund_id=refund_id, payment_id=payment_id, error=error)

    # ------------------------------------------------------------------
    # Queries and admin edits
    # ------------------------------------------------------------------

    async def get_payment(self, user: UserInfo, payment_id: str) -> PaymentEntity:
        payment = await self.store.get_or_raise(payment_id)
        if not user.is_admin:
            tenant = await self.tenants.get_tenant(payment.tenant_id)
            if tenant is None or tenant.user_id != user.user_id:
                raise BillingAuthorizationError(tenant_id=payment.tenant_id)
        return payment

    async def list_tenant_payments(
        self, user: UserInfo, tenant_id: str, today: date | None = None
    ) -> tuple[list[PaymentEntity], PaymentSummary]:
        tenant = await self._tenant_or_raise(tenant_id)
        self._authorize(user, tenant)

        payments = await self.store.list_for_tenant(tenant_id)
        return payments, summarize_payments(payments, today or datetime.now(UTC).date())

    async def rent_overview(self, today: date | None = None) -> list[TenantRentStatus]:
        """
        Current-month rent status for every active tenant.

        Rent counts as paid when a completed or processing rent payment is due
        this month. Unpaid rent becomes overdue after ``RENT_GRACE_DAY``.
        """
        today = today or datetime.now(UTC).date()
        month_start = _first_of_month(today)
        next_month = _first_of_month(today, 1)

        tenants = await self.tenants.list_active_tenants()
        collected = await self.store.list_collected_rent(
            [t.tenant_id for t in tenants], month_start, next_month
        )
        methods = await self.methods.list_active_methods(sorted({t.user_id for t in tenants}))

        paid_by_tenant: dict[str, list[PaymentEntity]] = {}
        for payment in collected:
            paid_by_tenant.setdefault(payment.tenant_id, []).append(payment)
        methods_by_user: dict[str, list[SavedMethod]] = {}
        for method in methods:
            methods_by_user.setdefault(method.user_id, []).append(method)

        overview = []
        for tenant in tenants:
            paid = paid_by_tenant.get(tenant.tenant_id, [])
            overview.append(
                TenantRentStatus(
                    tenant=tenant,
                    payment_due_date=month_start,
                    current_month_paid=bool(paid),
                    is_autopay=any(p.is_autopay for p in paid),
                    is_overdue=not paid and today.day > RENT_GRACE_DAY,
                    payment_methods=methods_by_user.get(tenant.user_id, []),
                )
            )

        logger.info(
            "billing.overview.generated",
            tenants=len(overview),
            unpaid=sum(1 for row in overview if not row.current_month_paid),
        )
        return overview

    async def update_payment(
        self, admin: UserInfo, payment_id: str, request: PaymentUpdateRequest
    ) -> PaymentEntity:
        """Correct non-status fields. Status only moves through the state machine."""
        changes = request.model_dump(exclude_none=True)
        if not changes:
            raise PaymentValidationError("No valid fields to update")

        payment = await self.store.update_fields(
            payment_id,
            payment_date=request.payment_date,
            payment_type=request.payment_type,
            note=request.notes,
        )
        log_audit_event(
            "billing.payment.updated",
            user_id=admin.user_id,
            resource_type="payment",
            resource_id=payment_id,
            fields=sorted(changes),
        )
        return payment

    async def delete_payment(self, admin: UserInfo, payment_id: str) -> None:
        """Irreversibly delete a payment row."""
        if not await self.store.delete(payment_id):
            raise PaymentNotFoundError("Payment not found", payment_id=payment_id)

        log_audit_event(
            "billing.payment.deleted",
            user_id=admin.user_id,
            resource_type="payment",
            resource_id=payment_id,
        )
