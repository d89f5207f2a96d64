"""
Payment Record Store - the billing ledger.

Every write commits on its own so that each payment row is durable the moment
it is created or transitioned. Status changes are conditional updates guarded
by the allowed source states, which makes them safe to apply more than once
and keeps them forward-only no matter how callers interleave.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leasedesk.billing.enums import (
    ACTIVE_PERIOD_STATUSES,
    PaymentMethodType,
    PaymentStatus,
    PaymentType,
    source_statuses_for,
)
from leasedesk.billing.exceptions import DuplicatePaymentError, PaymentNotFoundError
from leasedesk.billing.models import PaymentEntity

logger = structlog.get_logger(__name__)


class PaymentRecordStore:
    """Creates, reads and transitions Payment rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def insert_pending(
        self,
        *,
        tenant_id: str,
        property_id: str,
        amount: Decimal,
        payment_type: PaymentType,
        payment_method: PaymentMethodType,
        due_date: date,
        period_start: date | None = None,
        period_end: date | None = None,
        is_autopay: bool = False,
        notes: str | None = None,
    ) -> PaymentEntity:
        """
        Insert a ``pending`` payment.

        Raises:
            DuplicatePaymentError: A live payment already covers this tenant and period
        """
        payment = PaymentEntity(
            tenant_id=tenant_id,
            property_id=property_id,
            amount=amount,
            payment_type=payment_type,
            payment_method=payment_method,
            status=PaymentStatus.PENDING,
            period_start=period_start,
            period_end=period_end,
            due_date=due_date,
            is_autopay=is_autopay,
            notes=notes,
        )
        return await self._insert(payment)

    async def insert_completed(
        self,
        *,
        tenant_id: str,
        property_id: str,
        amount: Decimal,
        payment_type: PaymentType,
        payment_method: PaymentMethodType,
        payment_date: datetime,
        due_date: date,
        recorded_by: str,
        period_start: date | None = None,
        period_end: date | None = None,
        notes: str | None = None,
    ) -> PaymentEntity:
        """Insert a payment that is born ``completed`` (manual entries)."""
        payment = PaymentEntity(
            tenant_id=tenant_id,
            property_id=property_id,
            amount=amount,
            payment_type=payment_type,
            payment_method=payment_method,
            status=PaymentStatus.COMPLETED,
            period_start=period_start,
            period_end=period_end,
            due_date=due_date,
            payment_date=payment_date,
            recorded_by=recorded_by,
            notes=notes,
        )
        return await self._insert(payment)

    async def _insert(self, payment: PaymentEntity) -> PaymentEntity:
        # Captured up front: the rollback below expunges the pending instance
        tenant_id = payment.tenant_id
        period_start, period_end = payment.period_start, payment.period_end

        self.session.add(payment)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if period_start is None or period_end is None:
                raise

            existing = await self.find_active_for_period(tenant_id, period_start, period_end)
            if existing is None:
                # Some other constraint failed
                raise

            logger.info(
                "billing.payment.duplicate_period",
                tenant_id=tenant_id,
                period_start=str(period_start),
                period_end=str(period_end),
                existing_payment_id=existing.id,
            )
            raise DuplicatePaymentError(
                "Payment already exists for this period",
                tenant_id=tenant_id,
                existing_payment_id=existing.id,
                existing_status=existing.status.value,
            ) from e

        logger.info(
            "billing.payment.created",
            payment_id=payment.id,
            tenant_id=tenant_id,
            status=payment.status.value,
        )
        return payment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, payment_id: str) -> PaymentEntity | None:
        stmt = (
            select(PaymentEntity)
            .where(PaymentEntity.id == payment_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get_or_raise(self, payment_id: str) -> PaymentEntity:
        payment = await self.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError("Payment not found", payment_id=payment_id)
        return payment

    async def get_by_intent(self, intent_id: str) -> PaymentEntity | None:
        stmt = (
            select(PaymentEntity)
            .where(PaymentEntity.processor_intent_id == intent_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalars().first()

    async def get_by_charge(self, charge_id: str) -> PaymentEntity | None:
        stmt = (
            select(PaymentEntity)
            .where(PaymentEntity.processor_charge_id == charge_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalars().first()

    async def find_active_for_period(
        self, tenant_id: str, period_start: date, period_end: date
    ) -> PaymentEntity | None:
        """The live (pending, processing or completed) payment for a tenant period, if any."""
        stmt = (
            select(PaymentEntity)
            .where(
                PaymentEntity.tenant_id == tenant_id,
                PaymentEntity.period_start == period_start,
                PaymentEntity.period_end == period_end,
                PaymentEntity.status.in_(list(ACTIVE_PERIOD_STATUSES)),
            )
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalars().first()

    async def list_for_tenant(self, tenant_id: str) -> list[PaymentEntity]:
        """All payments for a tenant, newest first."""
        stmt = (
            select(PaymentEntity)
            .where(PaymentEntity.tenant_id == tenant_id)
            .order_by(PaymentEntity.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_collected_rent(
        self, tenant_ids: list[str], due_from: date, due_before: date
    ) -> list[PaymentEntity]:
        """Completed or processing rent payments due in ``[due_from, due_before)``."""
        if not tenant_ids:
            return []
        stmt = (
            select(PaymentEntity)
            .where(
                PaymentEntity.tenant_id.in_(tenant_ids),
                PaymentEntity.payment_type == PaymentType.RENT,
                PaymentEntity.status.in_([PaymentStatus.COMPLETED, PaymentStatus.PROCESSING]),
                PaymentEntity.due_date >= due_from,
                PaymentEntity.due_date < due_before,
            )
            .execution_options(populate_existing=True)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    async def transition(
        self,
        payment_id: str,
        target: PaymentStatus,
        *,
        intent_id: str | None = None,
        charge_id: str | None = None,
        fee_amount: Decimal | None = None,
        payment_date: datetime | None = None,
        note: str | None = None,
    ) -> bool:
        """
        Move a payment to ``target`` if its current status permits it.

        Returns False (and changes nothing) when the payment is missing, already
        in ``target``, or in a state ``target`` cannot be entered from.
        """
        values: dict[str, Any] = {"status": target, "updated_at": datetime.now(UTC)}
        if intent_id is not None:
            values["processor_intent_id"] = intent_id
        if charge_id is not None:
            values["processor_charge_id"] = charge_id
        if fee_amount is not None:
            values["processor_fee_amount"] = fee_amount
        if payment_date is not None:
            values["payment_date"] = payment_date
        if note:
            values["notes"] = func.coalesce(PaymentEntity.notes.concat("\n"), "").concat(note)

        stmt = (
            update(PaymentEntity)
            .where(
                PaymentEntity.id == payment_id,
                PaymentEntity.status.in_(list(source_statuses_for(target))),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()

        applied = result.rowcount == 1
        logger.info(
            "billing.payment.transition",
            payment_id=payment_id,
            target=target.value,
            applied=applied,
        )
        return applied

    async def update_fields(
        self,
        payment_id: str,
        *,
        payment_date: datetime | None = None,
        payment_type: PaymentType | None = None,
        note: str | None = None,
    ) -> PaymentEntity:
        """Admin correction of non-status fields. Notes are appended, never replaced."""
        payment = await self.get_or_raise(payment_id)

        if payment_date is not None:
            payment.payment_date = payment_date
        if payment_type is not None:
            payment.payment_type = payment_type
        if note:
            payment.notes = f"{payment.notes}\n{note}" if payment.notes else note

        await self.session.commit()
        return payment

    async def delete(self, payment_id: str) -> bool:
        result = await self.session.execute(
            delete(PaymentEntity).where(PaymentEntity.id == payment_id)
        )
        await self.session.commit()
        return result.rowcount == 1
