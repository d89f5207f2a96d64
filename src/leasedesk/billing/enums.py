"""
Billing enums and the payment state machine.
"""

from enum import Enum


class PaymentStatus(str, Enum):
    """Payment lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


# Statuses that count against the one-live-payment-per-tenant-per-period rule
ACTIVE_PERIOD_STATUSES: frozenset[PaymentStatus] = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.COMPLETED}
)

TERMINAL_STATUSES: frozenset[PaymentStatus] = frozenset(
    {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.REFUNDED}
)

# Forward-only edges. pending -> completed covers a success webhook that lands
# before the creator recorded the intent as processing.
ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED}
    ),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def source_statuses_for(target: PaymentStatus) -> frozenset[PaymentStatus]:
    """All statuses from which ``target`` may be entered."""
    return frozenset(
        source for source, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )


class PaymentType(str, Enum):
    """What a payment is for."""

    RENT = "rent"
    LATE_FEE = "late_fee"
    OTHER = "other"


class PaymentMethodType(str, Enum):
    """Instrument recorded on a payment row."""

    PROCESSOR_BANK = "processor_bank"
    PROCESSOR_CARD = "processor_card"
    CHECK = "check"
    CASH = "cash"
    MONEY_ORDER = "money_order"

    @property
    def is_manual(self) -> bool:
        return self in MANUAL_PAYMENT_METHODS

    @property
    def is_processor(self) -> bool:
        return not self.is_manual


MANUAL_PAYMENT_METHODS: frozenset[PaymentMethodType] = frozenset(
    {PaymentMethodType.CHECK, PaymentMethodType.CASH, PaymentMethodType.MONEY_ORDER}
)


class InstrumentType(str, Enum):
    """Saved payment method instrument class."""

    BANK = "ach"
    CARD = "card"

    @property
    def payment_method(self) -> PaymentMethodType:
        if self == InstrumentType.BANK:
            return PaymentMethodType.PROCESSOR_BANK
        return PaymentMethodType.PROCESSOR_CARD


class SavedPaymentMethodStatus(str, Enum):
    """Saved payment method status."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class ProcessorEventKind(str, Enum):
    """Webhook event kinds the reconciler distinguishes."""

    INTENT_SUCCEEDED = "payment_intent.succeeded"
    INTENT_FAILED = "payment_intent.payment_failed"
    INTENT_PROCESSING = "payment_intent.processing"
    CHARGE_REFUNDED = "charge.refunded"
    PAYMENT_METHOD_ATTACHED = "payment_method.attached"
    CUSTOMER_CREATED = "customer.created"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, event_type: str) -> "ProcessorEventKind":
        try:
            return cls(event_type)
        except ValueError:
            return cls.UNKNOWN


class OutcomeStatus(str, Enum):
    """Per-enrollment result of an autopay batch run."""

    CHARGED = "charged"
    FAILED = "failed"
    SKIPPED = "skipped"
