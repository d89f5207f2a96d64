"""
Autopay enrollment management.

One enrollment row per tenant. Cancelling keeps the row; enrolling again
re-activates it rather than creating a second one.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leasedesk.billing.config import BillingConfig, get_billing_config
from leasedesk.billing.directory import (
    PaymentMethodStore,
    SavedMethod,
    SqlPaymentMethodStore,
    SqlTenantDirectory,
    TenantDirectory,
    TenantRecord,
)
from leasedesk.billing.exceptions import (
    EnrollmentNotFoundError,
    PaymentMethodNotFoundError,
    PaymentValidationError,
    TenantNotFoundError,
)
from leasedesk.billing.models import AutopayEnrollmentEntity
from leasedesk.logging import log_audit_event

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AutopayStatus:
    is_enrolled: bool
    enrollment: AutopayEnrollmentEntity | None
    payment_method: SavedMethod | None


class AutopayService:
    """Enroll, cancel and inspect autopay for the signed-in tenant."""

    def __init__(
        self,
        session: AsyncSession,
        tenants: TenantDirectory | None = None,
        methods: PaymentMethodStore | None = None,
        config: BillingConfig | None = None,
    ) -> None:
        self.session = session
        self.tenants = tenants or SqlTenantDirectory(session)
        self.methods = methods or SqlPaymentMethodStore(session)
        self.config = config or get_billing_config()

    async def _tenant_for_user(self, user_id: str) -> TenantRecord:
        tenant = await self.tenants.get_tenant_for_user(user_id)
        if tenant is None:
            raise TenantNotFoundError("No active tenant record found", user_id=user_id)
        return tenant

    async def get_enrollment(self, tenant_id: str) -> AutopayEnrollmentEntity | None:
        stmt = (
            select(AutopayEnrollmentEntity)
            .where(AutopayEnrollmentEntity.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get_active_enrollment(self, tenant_id: str) -> AutopayEnrollmentEntity | None:
        enrollment = await self.get_enrollment(tenant_id)
        if enrollment is not None and enrollment.is_enrolled:
            return enrollment
        return None

    @staticmethod
    def _apply(
        enrollment: AutopayEnrollmentEntity,
        payment_method_id: str,
        discount: Decimal,
        now: datetime,
    ) -> str:
        """Point an existing enrollment at a new method and discount, re-activating it."""
        enrollment.payment_method_id = payment_method_id
        enrollment.discount_amount = discount
        if enrollment.is_enrolled:
            return "Autopay payment method updated successfully"

        enrollment.is_active = True
        enrollment.cancelled_at = None
        enrollment.enrolled_at = now
        return "Autopay enrollment reactivated successfully"

    async def enroll(
        self,
        user_id: str,
        payment_method_id: str,
        discount_amount: Decimal | None = None,
    ) -> tuple[AutopayEnrollmentEntity, str]:
        """
        Enroll the user's tenancy in autopay.

        Returns the enrollment and a message describing what happened
        (created, payment method updated, or re-activated).
        """
        tenant = await self._tenant_for_user(user_id)

        method = await self.methods.get_method(payment_method_id, user_id)
        if method is None or not method.is_active:
            raise PaymentMethodNotFoundError(
                "Payment method not found or invalid", payment_method_id=payment_method_id
            )

        discount = discount_amount
        if discount is None:
            discount = self.config.autopay.default_discount
        if discount < 0:
            raise PaymentValidationError("Discount cannot be negative")

        now = datetime.now(UTC)
        enrollment = await self.get_enrollment(tenant.tenant_id)
        if enrollment is not None:
            message = self._apply(enrollment, payment_method_id, discount, now)
        else:
            enrollment = AutopayEnrollmentEntity(
                tenant_id=tenant.tenant_id,
                payment_method_id=payment_method_id,
                is_active=True,
                discount_amount=discount,
                enrolled_at=now,
            )
            self.session.add(enrollment)
            message = "Successfully enrolled in autopay"

        try:
            await self.session.commit()
        except IntegrityError:
            # A concurrent first enrollment for this tenant won the insert
            await self.session.rollback()
            enrollment = await self.get_enrollment(tenant.tenant_id)
            if enrollment is None:
                raise
            logger.info(
                "billing.autopay.enroll_race",
                tenant_id=tenant.tenant_id,
                enrollment_id=enrollment.id,
            )
            message = self._apply(enrollment, payment_method_id, discount, now)
            await self.session.commit()

        log_audit_event(
            "billing.autopay.enrolled",
            user_id=user_id,
            resource_type="autopay_enrollment",
            resource_id=enrollment.id,
            tenant_id=tenant.tenant_id,
            discount=str(discount),
        )
        return enrollment, message

    async def cancel(self, user_id: str) -> AutopayEnrollmentEntity:
        tenant = await self._tenant_for_user(user_id)

        enrollment = await self.get_enrollment(tenant.tenant_id)
        if enrollment is None:
            raise EnrollmentNotFoundError("No autopay enrollment found", tenant_id=tenant.tenant_id)
        if not enrollment.is_enrolled:
            raise PaymentValidationError(
                "Autopay is not active", context={"tenant_id": tenant.tenant_id}
            )

        enrollment.is_active = False
        enrollment.cancelled_at = datetime.now(UTC)
        await self.session.commit()

        log_audit_event(
            "billing.autopay.cancelled",
            user_id=user_id,
            resource_type="autopay_enrollment",
            resource_id=enrollment.id,
            tenant_id=tenant.tenant_id,
        )
        return enrollment

    async def status(self, user_id: str) -> AutopayStatus:
        tenant = await self._tenant_for_user(user_id)
        enrollment = await self.get_enrollment(tenant.tenant_id)
        if enrollment is None:
            return AutopayStatus(is_enrolled=False, enrollment=None, payment_method=None)

        method = await self.methods.get_method(enrollment.payment_method_id, user_id)
        return AutopayStatus(
            is_enrolled=enrollment.is_enrolled, enrollment=enrollment, payment_method=method
        )
