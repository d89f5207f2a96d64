"""
Read-only access to the collaborator data the billing engine consumes.

Tenants and saved payment methods are owned by other portal services. The
engine only reads them, and hands plain snapshots to the rest of the billing
code so nothing downstream depends on a live ORM session.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from leasedesk.billing.enums import InstrumentType, SavedPaymentMethodStatus
from leasedesk.billing.models import (
    AutopayEnrollmentEntity,
    SavedPaymentMethodEntity,
    TenantEntity,
)


@dataclass(frozen=True, slots=True)
class TenantRecord:
    tenant_id: str
    user_id: str
    property_id: str
    unit_number: str | None
    rent_amount: Decimal | None
    status: str


@dataclass(frozen=True, slots=True)
class SavedMethod:
    """Processor token plus display metadata for a saved instrument."""

    method_id: str
    user_id: str
    processor_payment_method_id: str
    processor_customer_id: str
    instrument: InstrumentType
    is_default: bool
    status: SavedPaymentMethodStatus
    last4: str | None = None
    bank_name: str | None = None
    card_brand: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status == SavedPaymentMethodStatus.ACTIVE


@dataclass(frozen=True, slots=True)
class BillableEnrollment:
    """
    An active autopay enrollment joined with its tenant and saved method.

    Tenant or method fields are None when the referenced row no longer exists;
    the batch runner reports those enrollments instead of silently dropping them.
    """

    enrollment_id: str
    tenant_id: str
    discount: Decimal
    user_id: str | None = None
    property_id: str | None = None
    unit_number: str | None = None
    base_rent: Decimal | None = None
    payment_method_token: str | None = None
    customer_id: str | None = None
    instrument: InstrumentType | None = None

    @property
    def has_tenant(self) -> bool:
        return self.property_id is not None

    @property
    def has_payment_method(self) -> bool:
        return bool(self.payment_method_token and self.customer_id and self.instrument)


class TenantDirectory(Protocol):
    """Tenant and enrollment reader."""

    async def get_tenant(self, tenant_id: str) -> TenantRecord | None: ...

    async def get_tenant_for_user(self, user_id: str) -> TenantRecord | None: ...

    async def list_active_tenants(self) -> list[TenantRecord]: ...

    async def list_billable_enrollments(self) -> list[BillableEnrollment]: ...


class PaymentMethodStore(Protocol):
    """Saved payment method reader."""

    async def get_method(self, method_id: str, user_id: str) -> SavedMethod | None: ...

    async def find_customer_id(self, user_id: str) -> str | None: ...

    async def list_active_methods(self, user_ids: list[str]) -> list[SavedMethod]: ...


def _tenant_record(row: TenantEntity) -> TenantRecord:
    return TenantRecord(
        tenant_id=row.id,
        user_id=row.user_id,
        property_id=row.property_id,
        unit_number=row.unit_number,
        rent_amount=row.rent_amount,
        status=row.status,
    )


def _saved_method(row: SavedPaymentMethodEntity) -> SavedMethod:
    return SavedMethod(
        method_id=row.id,
        user_id=row.user_id,
        processor_payment_method_id=row.processor_payment_method_id,
        processor_customer_id=row.processor_customer_id,
        instrument=row.type,
        is_default=row.is_default,
        status=row.status,
        last4=row.last4,
        bank_name=row.bank_name,
        card_brand=row.card_brand,
        exp_month=row.exp_month,
        exp_year=row.exp_year,
    )


class SqlTenantDirectory:
    """TenantDirectory over the mirrored ``tenants`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_tenant(self, tenant_id: str) -> TenantRecord | None:
        row = await self.session.get(TenantEntity, tenant_id)
        return _tenant_record(row) if row else None

    async def get_tenant_for_user(self, user_id: str) -> TenantRecord | None:
        stmt = (
            select(TenantEntity)
            .where(TenantEntity.user_id == user_id, TenantEntity.status == "active")
            .limit(1)
        )
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _tenant_record(row) if row else None

    async def list_active_tenants(self) -> list[TenantRecord]:
        stmt = (
            select(TenantEntity)
            .where(TenantEntity.status == "active")
            .order_by(TenantEntity.property_id, TenantEntity.unit_number)
        )
        return [_tenant_record(row) for row in (await self.session.execute(stmt)).scalars()]

    async def list_billable_enrollments(self) -> list[BillableEnrollment]:
        stmt = (
            select(AutopayEnrollmentEntity, TenantEntity, SavedPaymentMethodEntity)
            .outerjoin(TenantEntity, TenantEntity.id == AutopayEnrollmentEntity.tenant_id)
            .outerjoin(
                SavedPaymentMethodEntity,
                and_(
                    SavedPaymentMethodEntity.id == AutopayEnrollmentEntity.payment_method_id,
                    SavedPaymentMethodEntity.status == SavedPaymentMethodStatus.ACTIVE,
                ),
            )
            .where(
                AutopayEnrollmentEntity.is_active.is_(True),
                AutopayEnrollmentEntity.cancelled_at.is_(None),
            )
            .order_by(AutopayEnrollmentEntity.enrolled_at)
        )
        result = await self.session.execute(stmt)

        enrollments = []
        for enrollment, tenant, method in result.all():
            enrollments.append(
                BillableEnrollment(
                    enrollment_id=enrollment.id,
                    tenant_id=enrollment.tenant_id,
                    discount=enrollment.discount_amount or Decimal("0"),
                    user_id=tenant.user_id if tenant else None,
                    property_id=tenant.property_id if tenant else None,
                    unit_number=tenant.unit_number if tenant else None,
                    base_rent=tenant.rent_amount if tenant else None,
                    payment_method_token=method.processor_payment_method_id if method else None,
                    customer_id=method.processor_customer_id if method else None,
                    instrument=method.type if method else None,
                )
            )
        return enrollments


class SqlPaymentMethodStore:
    """PaymentMethodStore over the mirrored ``payment_methods`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_method(self, method_id: str, user_id: str) -> SavedMethod | None:
        stmt = select(SavedPaymentMethodEntity).where(
            SavedPaymentMethodEntity.id == method_id,
            SavedPaymentMethodEntity.user_id == user_id,
        )
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _saved_method(row) if row else None

    async def find_customer_id(self, user_id: str) -> str | None:
        stmt = (
            select(SavedPaymentMethodEntity.processor_customer_id)
            .where(
                SavedPaymentMethodEntity.user_id == user_id,
                SavedPaymentMethodEntity.processor_customer_id.is_not(None),
            )
            .limit(1)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def list_active_methods(self, user_ids: list[str]) -> list[SavedMethod]:
        """Active methods for the given users, default method first per user."""
        if not user_ids:
            return []
        stmt = (
            select(SavedPaymentMethodEntity)
            .where(
                SavedPaymentMethodEntity.user_id.in_(user_ids),
                SavedPaymentMethodEntity.status == SavedPaymentMethodStatus.ACTIVE,
            )
            .order_by(SavedPaymentMethodEntity.is_default.desc(), SavedPaymentMethodEntity.id)
        )
        return [_saved_method(row) for row in (await self.session.execute(stmt)).scalars()]
