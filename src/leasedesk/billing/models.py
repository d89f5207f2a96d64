"""
Billing database tables.

``payments`` and ``autopay_enrollments`` are owned by the billing engine.
``tenants`` and ``payment_methods`` are read-only mirrors of tables owned by the
portal's property and payment-method services.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from leasedesk.billing.enums import (
    ACTIVE_PERIOD_STATUSES,
    InstrumentType,
    PaymentMethodType,
    PaymentStatus,
    PaymentType,
    SavedPaymentMethodStatus,
)
from leasedesk.db import Base, TimestampMixin


def _new_id() -> str:
    return str(uuid4())


def _enum_column(enum_cls: type, length: int = 20) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [member.value for member in members],
    )


_ACTIVE_PERIOD_SQL = "status IN ({})".format(
    ", ".join(f"'{status.value}'" for status in sorted(ACTIVE_PERIOD_STATUSES, key=str))
)


class PaymentEntity(TimestampMixin, Base):
    """One attempted or completed rent/fee charge."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Ownership
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    property_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Payment details
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_type: Mapped[PaymentType] = mapped_column(_enum_column(PaymentType), nullable=False)
    payment_method: Mapped[PaymentMethodType] = mapped_column(
        _enum_column(PaymentMethodType), nullable=False
    )
    status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )

    # Billing period (null for non-periodic fees)
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Processor linkage
    processor_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    processor_charge_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    processor_fee_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # Tracking
    is_autopay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recorded_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index(
            "uq_payments_tenant_period_active",
            "tenant_id",
            "period_start",
            "period_end",
            unique=True,
            postgresql_where=text(_ACTIVE_PERIOD_SQL),
            sqlite_where=text(_ACTIVE_PERIOD_SQL),
        ),
        Index("ix_payments_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentEntity(id={self.id!r}, tenant_id={self.tenant_id!r}, "
            f"status={self.status!r})>"
        )


class AutopayEnrollmentEntity(TimestampMixin, Base):
    """A tenant's standing authorization for recurring billing."""

    __tablename__ = "autopay_enrollments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    payment_method_id: Mapped[str] = mapped_column(String(36), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    enrolled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("discount_amount >= 0", name="ck_autopay_discount_non_negative"),
    )

    @property
    def is_enrolled(self) -> bool:
        return self.is_active and self.cancelled_at is None


class TenantEntity(Base):
    """Read-only mirror of the portal's tenants table."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    property_id: Mapped[str] = mapped_column(String(36), nullable=False)
    unit_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rent_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")


class SavedPaymentMethodEntity(TimestampMixin, Base):
    """Read-only mirror of saved processor payment methods. No raw credentials."""

    __tablename__ = "payment_methods"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    processor_payment_method_id: Mapped[str] = mapped_column(String(255), nullable=False)
    processor_customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[InstrumentType] = mapped_column(_enum_column(InstrumentType), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_brand: Mapped[str | None] = mapped_column(String(50), nullable=True)
    exp_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    exp_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[SavedPaymentMethodStatus] = mapped_column(
        _enum_column(SavedPaymentMethodStatus),
        nullable=False,
        default=SavedPaymentMethodStatus.ACTIVE,
    )


__all__ = [
    "PaymentEntity",
    "AutopayEnrollmentEntity",
    "TenantEntity",
    "SavedPaymentMethodEntity",
]
