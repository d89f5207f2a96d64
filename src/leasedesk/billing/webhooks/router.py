"""
Processor webhook endpoint.

The raw request body is verified against the signing secret before anything
is parsed. Verified events are acknowledged with 200 even when they match no
payment, so the processor does not retry them forever.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leasedesk.billing.dependencies import get_processor_gateway
from leasedesk.billing.exceptions import SignatureInvalidError
from leasedesk.billing.metrics import get_billing_metrics
from leasedesk.billing.payments.gateway import ProcessorGateway
from leasedesk.billing.webhooks.reconciler import WebhookReconciler
from leasedesk.db import get_async_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/billing/webhooks", tags=["Billing - Webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_async_session)],
    gateway: Annotated[ProcessorGateway, Depends(get_processor_gateway)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> dict[str, Any]:
    """Receive a Stripe event and apply it to the payment ledger."""
    payload = await request.body()
    metrics = get_billing_metrics()

    try:
        event = gateway.verify_and_decode_webhook(payload, stripe_signature)
    except SignatureInvalidError as e:
        metrics.record_webhook_rejected()
        logger.warning("billing.webhook.rejected", reason=e.message)
        raise

    with metrics.trace_webhook_processing(event.event_type):
        result = await WebhookReconciler(db, metrics=metrics).handle(event)

    logger.debug(
        "billing.webhook.processed",
        event_id=event.event_id,
        payment_id=result.payment_id,
        applied=result.applied,
        detail=result.detail,
    )
    return {"received": True}
