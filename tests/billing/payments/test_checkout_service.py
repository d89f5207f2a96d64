"""
Tests for tenant checkout: amount validation, authorization, duplicate periods
and processor failures.
"""

from datetime import date
from decimal import Decimal

import pytest

from leasedesk.billing.enums import (
    InstrumentType,
    PaymentMethodType,
    PaymentStatus,
    PaymentType,
    SavedPaymentMethodStatus,
)
from leasedesk.billing.exceptions import (
    BillingAuthorizationError,
    DuplicatePaymentError,
    PaymentMethodNotFoundError,
    PaymentValidationError,
    ProcessorError,
    TenantNotFoundError,
)
from leasedesk.billing.payments.service import PaymentService
from leasedesk.billing.schemas import CheckoutRequest

pytestmark = pytest.mark.integration

MAY = (date(2024, 5, 1), date(2024, 5, 31))


def _request(tenant_id: str, amount: str = "1200.00", **kwargs) -> CheckoutRequest:
    return CheckoutRequest(tenant_id=tenant_id, amount=Decimal(amount), **kwargs)


class TestCheckout:
    async def test_checkout_creates_processing_payment(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        method = await seed.method(instrument=InstrumentType.CARD)
        service = PaymentService(db_session, gateway=gateway)

        result = await service.create_checkout_intent(
            tenant_user,
            _request(
                tenant.id,
                payment_method_id=method.id,
                period_start=MAY[0],
                period_end=MAY[1],
            ),
        )

        assert result.payment_intent_id == "pi_fake_1"
        assert result.client_secret == "pi_fake_1_secret"
        assert result.amount == Decimal("1200.00")
        # 2.9% of 1200.00 = 34.80, plus 0.30
        assert result.estimated_fee == Decimal("35.10")

        payment = await seed.reload(result.payment_id)
        assert payment.status == PaymentStatus.PROCESSING
        assert payment.processor_intent_id == "pi_fake_1"
        assert payment.payment_method == PaymentMethodType.PROCESSOR_CARD
        assert payment.period_start == MAY[0]

        args = gateway.create_intent.call_args
        assert args.args[0] == "cus_test_1"
        assert args.args[1] == 120000
        assert args.args[2]["payment_id"] == result.payment_id
        assert args.args[2]["period_start"] == "2024-05-01"
        assert args.kwargs["payment_method_token"] == method.processor_payment_method_id

    async def test_checkout_without_saved_method_creates_customer(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        service = PaymentService(db_session, gateway=gateway)

        result = await service.create_checkout_intent(tenant_user, _request(tenant.id))

        gateway.get_or_create_customer.assert_awaited_once()
        args = gateway.get_or_create_customer.call_args.args
        assert args[1:] == ("user-1", "tenant@leasedesk.test", "Terry Tenant")
        assert gateway.create_intent.call_args.args[0] == "cus_created"
        assert result.estimated_fee is None

    async def test_rent_amount_must_match_rent_less_autopay_discount(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        method = await seed.method()
        await seed.enrollment(tenant.id, method.id, discount=Decimal("25.00"))
        service = PaymentService(db_session, gateway=gateway)

        with pytest.raises(PaymentValidationError, match="does not match"):
            await service.create_checkout_intent(tenant_user, _request(tenant.id, "1200.00"))
        gateway.create_intent.assert_not_called()

        result = await service.create_checkout_intent(tenant_user, _request(tenant.id, "1175.00"))
        assert result.amount == Decimal("1175.00")

    async def test_amount_within_a_cent_is_accepted(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        service = PaymentService(db_session, gateway=gateway)

        result = await service.create_checkout_intent(tenant_user, _request(tenant.id, "1199.99"))

        assert result.amount == Decimal("1199.99")

    async def test_fees_are_not_checked_against_rent(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        service = PaymentService(db_session, gateway=gateway)

        result = await service.create_checkout_intent(
            tenant_user, _request(tenant.id, "50.00", payment_type=PaymentType.LATE_FEE)
        )

        assert result.amount == Decimal("50.00")

    async def test_other_tenant_forbidden(
        self, db_session, seed, gateway, other_tenant_user, billing_config
    ):
        tenant = await seed.tenant(user_id="user-1")
        service = PaymentService(db_session, gateway=gateway)

        with pytest.raises(BillingAuthorizationError):
            await service.create_checkout_intent(other_tenant_user, _request(tenant.id))
        gateway.create_intent.assert_not_called()

    async def test_admin_may_start_payment_for_tenant(
        self, db_session, seed, gateway, admin_user, billing_config
    ):
        tenant = await seed.tenant()
        service = PaymentService(db_session, gateway=gateway)

        await service.create_checkout_intent(admin_user, _request(tenant.id))

        # Admin's own contact details are not put on the tenant's customer
        args = gateway.get_or_create_customer.call_args.args
        assert args[1:] == ("user-1", None, None)

    async def test_unknown_tenant(self, db_session, gateway, admin_user, billing_config):
        service = PaymentService(db_session, gateway=gateway)

        with pytest.raises(TenantNotFoundError):
            await service.create_checkout_intent(admin_user, _request("missing"))

    async def test_inactive_saved_method_rejected(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        method = await seed.method(status=SavedPaymentMethodStatus.INACTIVE)
        service = PaymentService(db_session, gateway=gateway)

        with pytest.raises(PaymentMethodNotFoundError):
            await service.create_checkout_intent(
                tenant_user, _request(tenant.id, payment_method_id=method.id)
            )

    async def test_existing_live_payment_for_period_is_conflict(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        existing = await seed.payment(tenant.id, status=PaymentStatus.PROCESSING, period=MAY)
        service = PaymentService(db_session, gateway=gateway)

        with pytest.raises(DuplicatePaymentError) as exc_info:
            await service.create_checkout_intent(
                tenant_user, _request(tenant.id, period_start=MAY[0], period_end=MAY[1])
            )

        assert exc_info.value.context["existing_payment_id"] == existing.id
        gateway.create_intent.assert_not_called()

    async def test_processor_failure_marks_payment_failed(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        gateway.create_intent.side_effect = ProcessorError("Your card was declined.")
        service = PaymentService(db_session, gateway=gateway)

        with pytest.raises(ProcessorError):
            await service.create_checkout_intent(
                tenant_user, _request(tenant.id, period_start=MAY[0], period_end=MAY[1])
            )

        payments = await service.store.list_for_tenant(tenant.id)
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.FAILED
        assert payments[0].notes == "Checkout failed: Your card was declined."

        # A failed attempt does not block a retry for the same period
        assert await service.store.find_active_for_period(tenant.id, *MAY) is None

    async def test_unexpected_gateway_error_marks_payment_failed(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        gateway.create_intent.side_effect = RuntimeError("connection reset")
        service = PaymentService(db_session, gateway=gateway)

        with pytest.raises(RuntimeError):
            await service.create_checkout_intent(
                tenant_user, _request(tenant.id, period_start=MAY[0], period_end=MAY[1])
            )

        [payment] = await service.store.list_for_tenant(tenant.id)
        assert payment.status == PaymentStatus.FAILED
        assert payment.notes == "Checkout failed: connection reset"
        assert await service.store.find_active_for_period(tenant.id, *MAY) is None

    async def test_sub_cent_amount_rejected_before_insert(
        self, db_session, seed, gateway, tenant_user, billing_config
    ):
        tenant = await seed.tenant()
        service = PaymentService(db_session, gateway=gateway)

        with pytest.raises(PaymentValidationError, match="Amount must be greater than 0"):
            await service.create_checkout_intent(
                tenant_user,
                _request(
                    tenant.id,
                    "0.001",
                    payment_type=PaymentType.LATE_FEE,
                    period_start=MAY[0],
                    period_end=MAY[1],
                ),
            )

        assert await service.store.list_for_tenant(tenant.id) == []
        gateway.create_intent.assert_not_called()
