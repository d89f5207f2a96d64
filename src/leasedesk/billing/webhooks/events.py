"""
Processor webhook events.

Verified Stripe payloads are decoded into a flat ``ProcessorEvent`` that carries
only the fields the reconciler acts on.
"""

from dataclasses import dataclass, field
from typing import Any

from leasedesk.billing.enums import ProcessorEventKind

DEFAULT_FAILURE_MESSAGE = "Payment failed"
DEFAULT_REFUND_REASON = "No reason provided"


@dataclass(frozen=True, slots=True)
class ProcessorEvent:
    """A verified, decoded processor event."""

    event_id: str
    event_type: str
    kind: ProcessorEventKind
    object_id: str | None = None
    intent_id: str | None = None
    charge_id: str | None = None
    fee_minor: int | None = None
    failure_message: str | None = None
    refund_reason: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def metadata_payment_id(self) -> str | None:
        return self.metadata.get("payment_id") or None


def _first_charge(intent: dict[str, Any]) -> dict[str, Any] | str | None:
    # Older API versions embed charges; newer ones expose latest_charge (id or expanded)
    charges = (intent.get("charges") or {}).get("data") or []
    if charges:
        return charges[0]
    return intent.get("latest_charge")


def _charge_fields(charge: dict[str, Any] | str | None) -> tuple[str | None, int | None]:
    if charge is None:
        return None, None
    if isinstance(charge, str):
        return charge, None

    fee = None
    balance_transaction = charge.get("balance_transaction")
    if isinstance(balance_transaction, dict) and balance_transaction.get("fee") is not None:
        fee = int(balance_transaction["fee"])
    return charge.get("id"), fee


def decode_event(payload: dict[str, Any]) -> ProcessorEvent:
    """Decode a verified Stripe event payload."""
    event_type = str(payload.get("type") or "")
    kind = ProcessorEventKind.from_type(event_type)
    obj: dict[str, Any] = (payload.get("data") or {}).get("object") or {}
    metadata = {str(k): str(v) for k, v in (obj.get("metadata") or {}).items()}

    base = {
        "event_id": str(payload.get("id") or ""),
        "event_type": event_type,
        "kind": kind,
        "object_id": obj.get("id"),
        "metadata": metadata,
    }

    match kind:
        case (
            ProcessorEventKind.INTENT_SUCCEEDED
            | ProcessorEventKind.INTENT_FAILED
            | ProcessorEventKind.INTENT_PROCESSING
        ):
            charge_id, fee_minor = _charge_fields(_first_charge(obj))
            failure_message = None
            if kind == ProcessorEventKind.INTENT_FAILED:
                last_error = obj.get("last_payment_error") or {}
                failure_message = last_error.get("message") or DEFAULT_FAILURE_MESSAGE
            return ProcessorEvent(
                **base,
                intent_id=obj.get("id"),
                charge_id=charge_id,
                fee_minor=fee_minor,
                failure_message=failure_message,
            )
        case ProcessorEventKind.CHARGE_REFUNDED:
            refunds = (obj.get("refunds") or {}).get("data") or []
            reason = refunds[0].get("reason") if refunds else None
            return ProcessorEvent(
                **base,
                intent_id=obj.get("payment_intent"),
                charge_id=obj.get("id"),
                refund_reason=reason or DEFAULT_REFUND_REASON,
            )
        case _:
            return ProcessorEvent(**base)
