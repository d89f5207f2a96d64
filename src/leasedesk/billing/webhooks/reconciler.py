"""
Webhook Reconciler.

Applies verified processor events to the ledger. Every handler is idempotent:
status changes go through the store's guarded transitions, so redelivered,
stale or out-of-order events end as no-ops. Events for payments that cannot
be found are logged and acknowledged, because retrying them will never help.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from leasedesk.billing.enums import PaymentStatus, ProcessorEventKind
from leasedesk.billing.metrics import BillingMetrics, get_billing_metrics
from leasedesk.billing.models import PaymentEntity
from leasedesk.billing.money_utils import from_minor_units
from leasedesk.billing.payments.repository import PaymentRecordStore
from leasedesk.billing.webhooks.events import ProcessorEvent

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """What the reconciler did with one event."""

    event_type: str
    payment_id: str | None = None
    applied: bool = False
    detail: str | None = None


class WebhookReconciler:
    """Dispatches processor events to ledger updates."""

    def __init__(self, session: AsyncSession, metrics: BillingMetrics | None = None) -> None:
        self.store = PaymentRecordStore(session)
        self.metrics = metrics or get_billing_metrics()

    async def handle(self, event: ProcessorEvent) -> ReconcileResult:
        self.metrics.record_webhook_received(event.event_type)
        log = logger.bind(event_id=event.event_id, event_type=event.event_type)
        log.info("billing.webhook.received")

        match event.kind:
            case ProcessorEventKind.INTENT_SUCCEEDED:
                return await self._intent_succeeded(event)
            case ProcessorEventKind.INTENT_FAILED:
                return await self._intent_failed(event)
            case ProcessorEventKind.INTENT_PROCESSING:
                return await self._intent_processing(event)
            case ProcessorEventKind.CHARGE_REFUNDED:
                return await self._charge_refunded(event)
            case ProcessorEventKind.PAYMENT_METHOD_ATTACHED | ProcessorEventKind.CUSTOMER_CREATED:
                # Attachment and customer creation are recorded by the portal's own flows
                log.info("billing.webhook.ignored", object_id=event.object_id)
                return ReconcileResult(event.event_type, detail="ignored")
            case _:
                log.info("billing.webhook.unhandled")
                return ReconcileResult(event.event_type, detail="unhandled")

    async def _locate_by_intent(self, event: ProcessorEvent) -> PaymentEntity | None:
        payment = None
        if event.intent_id:
            payment = await self.store.get_by_intent(event.intent_id)

        # The event can beat the creator's write of the intent id
        if payment is None and event.metadata_payment_id:
            payment = await self.store.get(event.metadata_payment_id)

        if payment is None:
            logger.warning(
                "billing.webhook.payment_not_found",
                event_type=event.event_type,
                intent_id=event.intent_id,
                metadata_payment_id=event.metadata_payment_id,
            )
        return payment

    async def _apply(
        self,
        event: ProcessorEvent,
        payment: PaymentEntity,
        target: PaymentStatus,
        **changes,
    ) -> ReconcileResult:
        payment_id = payment.id
        previous = payment.status
        applied = await self.store.transition(payment_id, target, **changes)
        if applied:
            self.metrics.record_status_change(target, source="webhook")
            logger.info(
                "billing.webhook.payment_updated",
                payment_id=payment_id,
                previous=previous.value,
                status=target.value,
            )
        else:
            logger.info(
                "billing.webhook.transition_skipped",
                payment_id=payment_id,
                current=previous.value,
                target=target.value,
            )
        return ReconcileResult(
            event.event_type,
            payment_id=payment_id,
            applied=applied,
            detail=None if applied else f"already {previous.value}",
        )

    async def _intent_succeeded(self, event: ProcessorEvent) -> ReconcileResult:
        payment = await self._locate_by_intent(event)
        if payment is None:
            return ReconcileResult(event.event_type, detail="payment not found")

        fee = from_minor_units(event.fee_minor) if event.fee_minor is not None else None
        return await self._apply(
            event,
            payment,
            PaymentStatus.COMPLETED,
            intent_id=event.intent_id,
            charge_id=event.charge_id,
            fee_amount=fee,
            payment_date=datetime.now(UTC),
        )

    async def _intent_failed(self, event: ProcessorEvent) -> ReconcileResult:
        payment = await self._locate_by_intent(event)
        if payment is None:
            return ReconcileResult(event.event_type, detail="payment not found")

        return await self._apply(
            event,
            payment,
            PaymentStatus.FAILED,
            intent_id=event.intent_id,
            note=event.failure_message,
        )

    async def _intent_processing(self, event: ProcessorEvent) -> ReconcileResult:
        payment = await self._locate_by_intent(event)
        if payment is None:
            return ReconcileResult(event.event_type, detail="payment not found")

        return await self._apply(
            event, payment, PaymentStatus.PROCESSING, intent_id=event.intent_id
        )

    async def _charge_refunded(self, event: ProcessorEvent) -> ReconcileResult:
        payment = None
        if event.charge_id:
            payment = await self.store.get_by_charge(event.charge_id)
        if payment is None and event.intent_id:
            payment = await self.store.get_by_intent(event.intent_id)

        if payment is None:
            logger.warning(
                "billing.webhook.payment_not_found",
                event_type=event.event_type,
                charge_id=event.charge_id,
            )
            return ReconcileResult(event.event_type, detail="payment not found")

        return await self._apply(
            event,
            payment,
            PaymentStatus.REFUNDED,
            charge_id=event.charge_id,
            note=f"Refunded: {event.refund_reason}",
        )
