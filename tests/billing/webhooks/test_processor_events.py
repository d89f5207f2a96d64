"""
Tests for decoding Stripe event payloads.
"""

import pytest

from leasedesk.billing.enums import ProcessorEventKind
from leasedesk.billing.webhooks.events import (
    DEFAULT_FAILURE_MESSAGE,
    DEFAULT_REFUND_REASON,
    decode_event,
)

pytestmark = pytest.mark.unit


def _event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


class TestIntentEvents:
    def test_succeeded_with_expanded_charge(self):
        event = decode_event(
            _event(
                "payment_intent.succeeded",
                {
                    "id": "pi_1",
                    "metadata": {"payment_id": "pay-1", "tenant_id": "tenant-1"},
                    "latest_charge": {
                        "id": "ch_1",
                        "balance_transaction": {"id": "txn_1", "fee": 500},
                    },
                },
            )
        )

        assert event.kind == ProcessorEventKind.INTENT_SUCCEEDED
        assert event.event_id == "evt_1"
        assert event.intent_id == "pi_1"
        assert event.charge_id == "ch_1"
        assert event.fee_minor == 500
        assert event.metadata_payment_id == "pay-1"

    def test_succeeded_with_embedded_charges(self):
        event = decode_event(
            _event(
                "payment_intent.succeeded",
                {"id": "pi_1", "charges": {"data": [{"id": "ch_9"}]}},
            )
        )

        assert event.charge_id == "ch_9"
        assert event.fee_minor is None

    def test_unexpanded_charge_id(self):
        event = decode_event(
            _event("payment_intent.succeeded", {"id": "pi_1", "latest_charge": "ch_2"})
        )

        assert event.charge_id == "ch_2"
        assert event.fee_minor is None
        assert event.metadata_payment_id is None

    def test_failure_message(self):
        event = decode_event(
            _event(
                "payment_intent.payment_failed",
                {"id": "pi_1", "last_payment_error": {"message": "Insufficient funds"}},
            )
        )

        assert event.kind == ProcessorEventKind.INTENT_FAILED
        assert event.failure_message == "Insufficient funds"

    def test_failure_without_message(self):
        event = decode_event(_event("payment_intent.payment_failed", {"id": "pi_1"}))

        assert event.failure_message == DEFAULT_FAILURE_MESSAGE


class TestOtherEvents:
    def test_charge_refunded(self):
        event = decode_event(
            _event(
                "charge.refunded",
                {
                    "id": "ch_1",
                    "payment_intent": "pi_1",
                    "refunds": {"data": [{"id": "re_1", "reason": "duplicate"}]},
                },
            )
        )

        assert event.kind == ProcessorEventKind.CHARGE_REFUNDED
        assert event.charge_id == "ch_1"
        assert event.intent_id == "pi_1"
        assert event.refund_reason == "duplicate"

    def test_refund_without_reason(self):
        event = decode_event(_event("charge.refunded", {"id": "ch_1"}))

        assert event.refund_reason == DEFAULT_REFUND_REASON

    def test_unknown_type(self):
        event = decode_event(_event("invoice.paid", {"id": "in_1"}))

        assert event.kind == ProcessorEventKind.UNKNOWN
        assert event.event_type == "invoice.paid"
        assert event.object_id == "in_1"

    def test_payload_without_object(self):
        event = decode_event({"id": "evt_2", "type": "customer.created"})

        assert event.kind == ProcessorEventKind.CUSTOMER_CREATED
        assert event.object_id is None
        assert event.metadata == {}
