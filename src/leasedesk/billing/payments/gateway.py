"""
Processor Gateway - Stripe wrapper.

Stripe is treated as an untrusted, eventually-consistent remote system. The
SDK is blocking, so every call runs in a worker thread and every SDK error is
surfaced as ``ProcessorError`` carrying the remote message.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Protocol

import stripe
import structlog

from leasedesk.billing.config import BillingConfig, StripeConfig, get_billing_config
from leasedesk.billing.directory import PaymentMethodStore
from leasedesk.billing.exceptions import (
    BillingConfigurationError,
    ProcessorError,
    SignatureInvalidError,
)
from leasedesk.billing.webhooks.events import ProcessorEvent, decode_event

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ChargeIntent:
    """Processor-side charge intent."""

    intent_id: str
    client_secret: str | None
    status: str
    amount_minor: int


@dataclass(frozen=True, slots=True)
class RefundReceipt:
    refund_id: str
    amount_minor: int
    status: str


class ProcessorGateway(Protocol):
    """Operations the billing engine needs from the payment processor."""

    async def get_or_create_customer(
        self, methods: PaymentMethodStore, user_id: str, email: str | None, name: str | None
    ) -> str: ...

    async def create_intent(
        self,
        customer_id: str,
        amount_minor: int,
        metadata: dict[str, str],
        payment_method_token: str | None = None,
        off_session: bool = False,
    ) -> ChargeIntent: ...

    async def refund(
        self,
        intent_id: str,
        amount_minor: int | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundReceipt: ...

    def verify_and_decode_webhook(
        self, payload: bytes, signature: str | None
    ) -> ProcessorEvent: ...


def _processor_error(error: stripe.StripeError, operation: str) -> ProcessorError:
    message = getattr(error, "user_message", None) or str(error) or "Payment processor error"
    code = getattr(error, "code", None)
    logger.warning("billing.processor.error", operation=operation, code=code, error=message)
    return ProcessorError(message, processor_code=code, operation=operation)


class StripeGateway:
    """ProcessorGateway backed by the Stripe API."""

    # Stripe only accepts these reason codes; anything else is kept in our notes only
    REFUND_REASONS = frozenset({"duplicate", "fraudulent", "requested_by_customer"})

    def __init__(self, config: StripeConfig, currency: str = "USD") -> None:
        self.config = config
        self.currency = currency.lower()
        stripe.api_key = config.api_key
        stripe.max_network_retries = config.max_network_retries

    async def get_or_create_customer(
        self, methods: PaymentMethodStore, user_id: str, email: str | None, name: str | None
    ) -> str:
        """Reuse the customer behind any saved method before creating a new one."""
        existing = await methods.find_customer_id(user_id)
        if existing:
            return existing

        try:
            customer = await asyncio.to_thread(
                stripe.Customer.create,
                email=email,
                name=name,
                metadata={"user_id": user_id},
            )
        except stripe.StripeError as e:
            raise _processor_error(e, "create_customer") from e

        logger.info("billing.processor.customer_created", user_id=user_id, customer_id=customer.id)
        return customer.id

    async def create_intent(
        self,
        customer_id: str,
        amount_minor: int,
        metadata: dict[str, str],
        payment_method_token: str | None = None,
        off_session: bool = False,
    ) -> ChargeIntent:
        """
        Create a payment intent.

        With a method token the intent is not confirmed here; the checkout client
        confirms it. ``off_session`` confirms immediately against the saved method
        for unattended charges.
        """
        params: dict[str, Any] = {
            "amount": amount_minor,
            "currency": self.currency,
            "customer": customer_id,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
        }
        if payment_method_token:
            params["payment_method"] = payment_method_token
            params["confirm"] = off_session
            if off_session:
                params["off_session"] = True

        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.create, **params)
        except stripe.StripeError as e:
            raise _processor_error(e, "create_intent") from e

        return ChargeIntent(
            intent_id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            status=intent.status,
            amount_minor=amount_minor,
        )

    async def refund(
        self,
        intent_id: str,
        amount_minor: int | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundReceipt:
        """Refund an intent. Full refund unless an amount is given."""
        params: dict[str, Any] = {
            "payment_intent": intent_id,
            "reason": reason if reason in self.REFUND_REASONS else "requested_by_customer",
            "metadata": metadata or {},
        }
        if amount_minor is not None:
            params["amount"] = amount_minor

        try:
            refund = await asyncio.to_thread(stripe.Refund.create, **params)
        except stripe.StripeError as e:
            raise _processor_error(e, "refund") from e

        return RefundReceipt(refund_id=refund.id, amount_minor=refund.amount, status=refund.status)

    def verify_and_decode_webhook(self, payload: bytes, signature: str | None) -> ProcessorEvent:
        """
        Verify the ``Stripe-Signature`` header, then decode the payload.

        Raises:
            SignatureInvalidError: Missing header or signature mismatch
            BillingConfigurationError: No webhook secret configured
        """
        if not self.config.webhook_secret:
            raise BillingConfigurationError(
                "Webhook secret not configured", config_key="billing.stripe_webhook_secret"
            )
        if not signature:
            raise SignatureInvalidError("Missing signature")

        try:
            stripe.Webhook.construct_event(payload, signature, self.config.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalidError() from e
        except ValueError as e:
            raise SignatureInvalidError("Malformed webhook payload") from e

        return decode_event(json.loads(payload))


def build_gateway(config: BillingConfig | None = None) -> StripeGateway:
    """Build the Stripe gateway from billing configuration."""
    config = config or get_billing_config()
    if config.stripe is None:
        raise BillingConfigurationError(
            "Stripe is not configured",
            config_key="billing.stripe_api_key",
            recovery_hint="Set BILLING__STRIPE_API_KEY",
        )
    return StripeGateway(config.stripe, currency=config.currency.default_currency)
