"""
Billing module metrics and tracing.

Instruments come from the OpenTelemetry API. Without an SDK configured in the
process they are no-ops, so recording is always safe.
"""

from contextlib import AbstractContextManager

from opentelemetry import metrics, trace
from opentelemetry.metrics import Counter, Histogram, Meter
from opentelemetry.trace import Span, SpanKind, Tracer

from leasedesk.billing.enums import OutcomeStatus, PaymentStatus

INSTRUMENTATION_NAME = "leasedesk.billing"


class BillingMetrics:
    """Billing metrics collector"""

    def __init__(self, meter: Meter | None = None, tracer: Tracer | None = None) -> None:
        self.meter = meter or metrics.get_meter(INSTRUMENTATION_NAME)
        self.tracer = tracer or trace.get_tracer(INSTRUMENTATION_NAME)

        # Payment metrics
        self.payment_created_counter = self._create_counter(
            name="billing.payment.created",
            description="Number of payment rows created",
        )
        self.payment_status_counter = self._create_counter(
            name="billing.payment.status_changed",
            description="Number of payment status transitions",
        )
        self.payment_amount_histogram = self._create_histogram(
            name="billing.payment.amount",
            description="Charged payment amounts",
            unit="cents",
        )
        self.refund_counter = self._create_counter(
            name="billing.refund.total",
            description="Total refunds issued",
            unit="cents",
        )
        self.ledger_inconsistency_counter = self._create_counter(
            name="billing.ledger.inconsistency",
            description="Processor actions that could not be persisted locally",
        )

        # Webhook metrics
        self.webhook_received_counter = self._create_counter(
            name="billing.webhook.received",
            description="Number of webhooks received",
        )
        self.webhook_rejected_counter = self._create_counter(
            name="billing.webhook.rejected",
            description="Number of webhooks rejected for a bad signature",
        )

        # Autopay metrics
        self.autopay_outcome_counter = self._create_counter(
            name="billing.autopay.outcome",
            description="Autopay batch outcomes per enrollment",
        )

    # Payment metrics
    def record_payment_created(
        self, tenant_id: str, amount_minor: int, source: str, currency: str = "USD"
    ) -> None:
        """Record creation of a payment row"""
        attributes = {"tenant_id": tenant_id, "source": source, "currency": currency}
        self.payment_created_counter.add(1, attributes)
        self.payment_amount_histogram.record(amount_minor, attributes)

    def record_status_change(self, status: PaymentStatus, source: str) -> None:
        """Record a payment entering a new status"""
        self.payment_status_counter.add(1, {"status": status.value, "source": source})

    def record_refund(self, tenant_id: str, amount_minor: int, currency: str = "USD") -> None:
        """Record a processor refund"""
        self.refund_counter.add(amount_minor, {"tenant_id": tenant_id, "currency": currency})

    def record_ledger_inconsistency(self, operation: str) -> None:
        self.ledger_inconsistency_counter.add(1, {"operation": operation})

    # Webhook metrics
    def record_webhook_received(self, event_type: str) -> None:
        self.webhook_received_counter.add(1, {"provider": "stripe", "event_type": event_type})

    def record_webhook_rejected(self) -> None:
        self.webhook_rejected_counter.add(1, {"provider": "stripe"})

    # Autopay metrics
    def record_autopay_outcome(self, status: OutcomeStatus) -> None:
        self.autopay_outcome_counter.add(1, {"outcome": status.value})

    # Internal helpers -----------------------------------------------------

    def _create_counter(self, name: str, description: str, unit: str = "1") -> Counter:
        return self.meter.create_counter(name=name, description=description, unit=unit)

    def _create_histogram(self, name: str, description: str, unit: str = "1") -> Histogram:
        return self.meter.create_histogram(name=name, description=description, unit=unit)

    # Tracing helpers
    def trace_payment_operation(
        self, operation: str, payment_id: str | None = None
    ) -> AbstractContextManager[Span]:
        """Create a trace span for payment operations"""
        attributes = {"operation": operation}
        if payment_id:
            attributes["payment_id"] = payment_id
        return self.tracer.start_as_current_span(
            f"billing.payment.{operation}", kind=SpanKind.INTERNAL, attributes=attributes
        )

    def trace_webhook_processing(self, event_type: str) -> AbstractContextManager[Span]:
        """Create a trace span for webhook processing"""
        return self.tracer.start_as_current_span(
            "billing.webhook.process",
            kind=SpanKind.SERVER,
            attributes={"provider": "stripe", "event_type": event_type},
        )


# Global metrics instance
_billing_metrics: BillingMetrics | None = None


def get_billing_metrics() -> BillingMetrics:
    """Get the global billing metrics instance"""
    global _billing_metrics
    if _billing_metrics is None:
        _billing_metrics = BillingMetrics()
    return _billing_metrics


def set_billing_metrics(billing_metrics: BillingMetrics | None) -> None:
    """Set the global billing metrics instance"""
    global _billing_metrics
    _billing_metrics = billing_metrics
