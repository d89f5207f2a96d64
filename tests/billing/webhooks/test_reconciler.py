"""
Tests for applying processor events to the ledger.
"""

from datetime import date
from decimal import Decimal

import pytest

from leasedesk.billing.enums import PaymentStatus, ProcessorEventKind
from leasedesk.billing.webhooks.events import ProcessorEvent
from leasedesk.billing.webhooks.reconciler import WebhookReconciler

pytestmark = pytest.mark.integration


def _event(kind: ProcessorEventKind, **fields) -> ProcessorEvent:
    return ProcessorEvent(event_id="evt_1", event_type=kind.value, kind=kind, **fields)


def succeeded(intent_id: str = "pi_test_1", **fields) -> ProcessorEvent:
    return _event(ProcessorEventKind.INTENT_SUCCEEDED, intent_id=intent_id, **fields)


class TestIntentSucceeded:
    async def test_completes_processing_payment(self, db_session, seed):
        payment = await seed.payment("tenant-1", status=PaymentStatus.PROCESSING)

        result = await WebhookReconciler(db_session).handle(
            succeeded(charge_id="ch_1", fee_minor=500)
        )

        assert result.applied is True
        assert result.payment_id == payment.id
        reloaded = await seed.reload(payment.id)
        assert reloaded.status == PaymentStatus.COMPLETED
        assert reloaded.processor_charge_id == "ch_1"
        assert reloaded.processor_fee_amount == Decimal("5.00")
        assert reloaded.payment_date is not None

    async def test_redelivery_is_a_no_op(self, db_session, seed):
        payment = await seed.payment("tenant-1", status=PaymentStatus.PROCESSING)
        reconciler = WebhookReconciler(db_session)

        await reconciler.handle(succeeded(charge_id="ch_1"))
        first = await seed.reload(payment.id)
        result = await reconciler.handle(succeeded(charge_id="ch_1"))

        assert result.applied is False
        assert result.detail == "already completed"
        assert (await seed.reload(payment.id)).updated_at == first.updated_at

    async def test_located_by_metadata_before_intent_recorded(self, db_session, seed):
        payment = await seed.payment("tenant-1", status=PaymentStatus.PENDING, intent_id=None)

        result = await WebhookReconciler(db_session).handle(
            succeeded("pi_new", metadata={"payment_id": payment.id})
        )

        assert result.applied is True
        reloaded = await seed.reload(payment.id)
        assert reloaded.status == PaymentStatus.COMPLETED
        assert reloaded.processor_intent_id == "pi_new"

    async def test_unknown_payment_is_acknowledged(self, db_session):
        result = await WebhookReconciler(db_session).handle(succeeded("pi_unknown"))

        assert result.applied is False
        assert result.detail == "payment not found"

    async def test_does_not_resurrect_failed_payment(self, db_session, seed):
        payment = await seed.payment("tenant-1", status=PaymentStatus.FAILED)

        result = await WebhookReconciler(db_session).handle(succeeded())

        assert result.applied is False
        assert (await seed.reload(payment.id)).status == PaymentStatus.FAILED


class TestIntentFailedAndProcessing:
    async def test_failure_appends_message(self, db_session, seed):
        payment = await seed.payment(
            "tenant-1", status=PaymentStatus.PROCESSING, notes="Autopay - discount applied: $25.00"
        )

        await WebhookReconciler(db_session).handle(
            _event(
                ProcessorEventKind.INTENT_FAILED,
                intent_id="pi_test_1",
                failure_message="Insufficient funds",
            )
        )

        reloaded = await seed.reload(payment.id)
        assert reloaded.status == PaymentStatus.FAILED
        assert reloaded.notes == "Autopay - discount applied: $25.00\nInsufficient funds"

    async def test_late_failure_after_success_is_ignored(self, db_session, seed):
        payment = await seed.payment("tenant-1", status=PaymentStatus.COMPLETED)

        result = await WebhookReconciler(db_session).handle(
            _event(ProcessorEventKind.INTENT_FAILED, intent_id="pi_test_1", failure_message="x")
        )

        assert result.applied is False
        assert (await seed.reload(payment.id)).status == PaymentStatus.COMPLETED

    async def test_failed_payment_frees_the_period(self, db_session, seed):
        period = (date(2024, 5, 1), date(2024, 5, 31))
        await seed.payment("tenant-1", status=PaymentStatus.PROCESSING, period=period)

        await WebhookReconciler(db_session).handle(
            _event(ProcessorEventKind.INTENT_FAILED, intent_id="pi_test_1", failure_message="x")
        )

        retry = await seed.payment(
            "tenant-1", status=PaymentStatus.PENDING, period=period, intent_id=None
        )
        assert retry.id is not None

    async def test_processing_moves_pending_forward(self, db_session, seed):
        payment = await seed.payment("tenant-1", status=PaymentStatus.PENDING)
        reconciler = WebhookReconciler(db_session)

        first = await reconciler.handle(
            _event(ProcessorEventKind.INTENT_PROCESSING, intent_id="pi_test_1")
        )
        second = await reconciler.handle(
            _event(ProcessorEventKind.INTENT_PROCESSING, intent_id="pi_test_1")
        )

        assert first.applied is True
        assert second.applied is False
        assert (await seed.reload(payment.id)).status == PaymentStatus.PROCESSING


class TestChargeRefunded:
    async def test_found_by_charge(self, db_session, seed):
        payment = await seed.payment("tenant-1", charge_id="ch_1")

        result = await WebhookReconciler(db_session).handle(
            _event(ProcessorEventKind.CHARGE_REFUNDED, charge_id="ch_1", refund_reason="duplicate")
        )

        assert result.applied is True
        reloaded = await seed.reload(payment.id)
        assert reloaded.status == PaymentStatus.REFUNDED
        assert reloaded.notes == "Refunded: duplicate"

    async def test_falls_back_to_intent(self, db_session, seed):
        payment = await seed.payment("tenant-1", intent_id="pi_7", charge_id=None)

        await WebhookReconciler(db_session).handle(
            _event(
                ProcessorEventKind.CHARGE_REFUNDED,
                charge_id="ch_7",
                intent_id="pi_7",
                refund_reason="requested_by_customer",
            )
        )

        reloaded = await seed.reload(payment.id)
        assert reloaded.status == PaymentStatus.REFUNDED
        assert reloaded.processor_charge_id == "ch_7"

    async def test_refund_after_admin_refund_is_a_no_op(self, db_session, seed):
        payment = await seed.payment(
            "tenant-1", status=PaymentStatus.REFUNDED, charge_id="ch_1", notes="Refunded by admin"
        )

        result = await WebhookReconciler(db_session).handle(
            _event(ProcessorEventKind.CHARGE_REFUNDED, charge_id="ch_1", refund_reason="x")
        )

        assert result.applied is False
        assert (await seed.reload(payment.id)).notes == "Refunded by admin"

    async def test_unknown_charge(self, db_session):
        result = await WebhookReconciler(db_session).handle(
            _event(ProcessorEventKind.CHARGE_REFUNDED, charge_id="ch_missing")
        )

        assert result.detail == "payment not found"


class TestUnhandledEvents:
    @pytest.mark.parametrize(
        ("kind", "detail"),
        [
            (ProcessorEventKind.PAYMENT_METHOD_ATTACHED, "ignored"),
            (ProcessorEventKind.CUSTOMER_CREATED, "ignored"),
            (ProcessorEventKind.UNKNOWN, "unhandled"),
        ],
    )
    async def test_acknowledged_without_changes(self, db_session, seed, kind, detail):
        payment = await seed.payment("tenant-1", status=PaymentStatus.PROCESSING)

        result = await WebhookReconciler(db_session).handle(_event(kind, object_id="obj_1"))

        assert result.applied is False
        assert result.detail == detail
        assert (await seed.reload(payment.id)).status == PaymentStatus.PROCESSING
