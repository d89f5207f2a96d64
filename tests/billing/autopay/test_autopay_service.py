"""
Tests for autopay enrollment management.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from leasedesk.billing.autopay.service import AutopayService
from leasedesk.billing.enums import SavedPaymentMethodStatus
from leasedesk.billing.exceptions import (
    EnrollmentNotFoundError,
    PaymentMethodNotFoundError,
    PaymentValidationError,
    TenantNotFoundError,
)

pytestmark = pytest.mark.integration


class TestEnroll:
    async def test_first_enrollment_uses_default_discount(self, db_session, seed, billing_config):
        tenant = await seed.tenant()
        method = await seed.method()

        enrollment, message = await AutopayService(db_session).enroll("user-1", method.id)

        assert message == "Successfully enrolled in autopay"
        assert enrollment.tenant_id == tenant.id
        assert enrollment.is_active is True
        assert enrollment.discount_amount == Decimal("25.00")

    async def test_enrolling_again_updates_method(self, db_session, seed, billing_config):
        await seed.tenant()
        first = await seed.method()
        second = await seed.method()
        service = AutopayService(db_session)
        original, _ = await service.enroll("user-1", first.id)

        enrollment, message = await service.enroll(
            "user-1", second.id, discount_amount=Decimal("10.00")
        )

        assert message == "Autopay payment method updated successfully"
        assert enrollment.id == original.id
        assert enrollment.payment_method_id == second.id
        assert enrollment.discount_amount == Decimal("10.00")

    async def test_cancelled_enrollment_is_reactivated(self, db_session, seed, billing_config):
        tenant = await seed.tenant()
        method = await seed.method()
        cancelled = await seed.enrollment(tenant.id, method.id, is_active=False)

        enrollment, message = await AutopayService(db_session).enroll("user-1", method.id)

        assert message == "Autopay enrollment reactivated successfully"
        assert enrollment.id == cancelled.id
        assert enrollment.is_enrolled
        assert enrollment.cancelled_at is None

    async def test_concurrent_first_enrollment_updates_existing_row(
        self, db_session, seed, billing_config
    ):
        tenant = await seed.tenant()
        method = await seed.method()
        service = AutopayService(db_session)
        real_get_enrollment = service.get_enrollment
        winner = None

        async def lose_insert_race(tenant_id):
            nonlocal winner
            if winner is None:
                # Another request enrolls between our lookup and our insert
                winner = await seed.enrollment(tenant_id, method.id)
                return None
            return await real_get_enrollment(tenant_id)

        with patch.object(service, "get_enrollment", side_effect=lose_insert_race):
            enrollment, message = await service.enroll(
                "user-1", method.id, discount_amount=Decimal("10.00")
            )

        assert enrollment.id == winner.id
        assert enrollment.tenant_id == tenant.id
        assert enrollment.discount_amount == Decimal("10.00")
        assert message == "Autopay payment method updated successfully"

    async def test_inactive_method_rejected(self, db_session, seed, billing_config):
        await seed.tenant()
        method = await seed.method(status=SavedPaymentMethodStatus.INACTIVE)

        with pytest.raises(PaymentMethodNotFoundError):
            await AutopayService(db_session).enroll("user-1", method.id)

    async def test_someone_elses_method_rejected(self, db_session, seed, billing_config):
        await seed.tenant(user_id="user-1")
        method = await seed.method(user_id="user-2")

        with pytest.raises(PaymentMethodNotFoundError):
            await AutopayService(db_session).enroll("user-1", method.id)

    async def test_user_without_active_tenancy(self, db_session, seed, billing_config):
        await seed.tenant(status="moved_out")
        method = await seed.method()

        with pytest.raises(TenantNotFoundError):
            await AutopayService(db_session).enroll("user-1", method.id)

    async def test_negative_discount_rejected(self, db_session, seed, billing_config):
        await seed.tenant()
        method = await seed.method()

        with pytest.raises(PaymentValidationError, match="negative"):
            await AutopayService(db_session).enroll(
                "user-1", method.id, discount_amount=Decimal("-1")
            )


class TestCancelAndStatus:
    async def test_cancel(self, db_session, seed, billing_config):
        tenant = await seed.tenant()
        method = await seed.method()
        await seed.enrollment(tenant.id, method.id)
        service = AutopayService(db_session)

        enrollment = await service.cancel("user-1")

        assert enrollment.is_active is False
        assert enrollment.cancelled_at is not None
        assert await service.get_active_enrollment(tenant.id) is None

    async def test_cancel_without_enrollment(self, db_session, seed, billing_config):
        await seed.tenant()

        with pytest.raises(EnrollmentNotFoundError):
            await AutopayService(db_session).cancel("user-1")

    async def test_cancel_twice(self, db_session, seed, billing_config):
        tenant = await seed.tenant()
        method = await seed.method()
        await seed.enrollment(tenant.id, method.id, is_active=False)

        with pytest.raises(PaymentValidationError, match="not active"):
            await AutopayService(db_session).cancel("user-1")

    async def test_status_when_enrolled(self, db_session, seed, billing_config):
        tenant = await seed.tenant()
        method = await seed.method()
        await seed.enrollment(tenant.id, method.id)

        status = await AutopayService(db_session).status("user-1")

        assert status.is_enrolled is True
        assert status.payment_method.method_id == method.id
        assert status.payment_method.last4 == "6789"

    async def test_status_when_not_enrolled(self, db_session, seed, billing_config):
        await seed.tenant()

        status = await AutopayService(db_session).status("user-1")

        assert status.is_enrolled is False
        assert status.enrollment is None
        assert status.payment_method is None
