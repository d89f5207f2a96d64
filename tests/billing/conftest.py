"""
Billing fixtures: a temporary SQLite ledger, seed-data factories and a fake
processor gateway.
"""

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from decimal import Decimal
from itertools import count
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from leasedesk.billing.config import BillingConfig, StripeConfig, set_billing_config
from leasedesk.billing.dependencies import get_processor_gateway
from leasedesk.billing.enums import (
    InstrumentType,
    PaymentMethodType,
    PaymentStatus,
    PaymentType,
    SavedPaymentMethodStatus,
)
from leasedesk.billing.models import (
    AutopayEnrollmentEntity,
    PaymentEntity,
    SavedPaymentMethodEntity,
    TenantEntity,
)
from leasedesk.billing.payments.gateway import ChargeIntent, RefundReceipt
from leasedesk.db import Base, set_session_maker
from leasedesk.main import create_application


@pytest.fixture
def billing_config() -> BillingConfig:
    config = BillingConfig(
        stripe=StripeConfig(api_key="sk_test_leasedesk", webhook_secret="whsec_test_leasedesk")
    )
    set_billing_config(config)
    return config


@pytest.fixture
async def session_maker(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Session factory over a fresh file-backed SQLite database."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(
        bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )
    set_session_maker(maker)
    yield maker
    set_session_maker(None)
    await engine.dispose()


@pytest.fixture
async def db_session(session_maker) -> AsyncIterator[AsyncSession]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def seed(session_maker):
    """Factories that insert collaborator and ledger rows in their own sessions."""
    ids = count(1)

    class Seed:
        async def _add(self, entity):
            async with session_maker() as session:
                session.add(entity)
                await session.commit()
            return entity

        async def tenant(
            self,
            *,
            tenant_id: str | None = None,
            user_id: str = "user-1",
            rent_amount: Decimal | None = Decimal("1200.00"),
            status: str = "active",
        ) -> TenantEntity:
            n = next(ids)
            return await self._add(
                TenantEntity(
                    id=tenant_id or f"tenant-{n}",
                    user_id=user_id,
                    property_id="property-1",
                    unit_number=f"{100 + n}",
                    rent_amount=rent_amount,
                    status=status,
                )
            )

        async def method(
            self,
            *,
            user_id: str = "user-1",
            instrument: InstrumentType = InstrumentType.BANK,
            status: SavedPaymentMethodStatus = SavedPaymentMethodStatus.ACTIVE,
            customer_id: str = "cus_test_1",
        ) -> SavedPaymentMethodEntity:
            n = next(ids)
            return await self._add(
                SavedPaymentMethodEntity(
                    id=f"method-{n}",
                    user_id=user_id,
                    processor_payment_method_id=f"pm_test_{n}",
                    processor_customer_id=customer_id,
                    type=instrument,
                    is_default=True,
                    last4="6789",
                    bank_name="Test Bank" if instrument == InstrumentType.BANK else None,
                    card_brand="visa" if instrument == InstrumentType.CARD else None,
                    status=status,
                )
            )

        async def enrollment(
            self,
            tenant_id: str,
            payment_method_id: str,
            *,
            discount: Decimal = Decimal("25.00"),
            is_active: bool = True,
        ) -> AutopayEnrollmentEntity:
            return await self._add(
                AutopayEnrollmentEntity(
                    tenant_id=tenant_id,
                    payment_method_id=payment_method_id,
                    is_active=is_active,
                    discount_amount=discount,
                    enrolled_at=datetime.now(UTC),
                    cancelled_at=None if is_active else datetime.now(UTC),
                )
            )

        async def payment(
            self,
            tenant_id: str,
            *,
            amount: Decimal = Decimal("1175.00"),
            status: PaymentStatus = PaymentStatus.COMPLETED,
            payment_method: PaymentMethodType = PaymentMethodType.PROCESSOR_BANK,
            payment_type: PaymentType = PaymentType.RENT,
            period: tuple | None = None,
            due_date=None,
            intent_id: str | None = "pi_test_1",
            charge_id: str | None = None,
            notes: str | None = None,
            is_autopay: bool = False,
        ) -> PaymentEntity:
            period_start, period_end = period or (None, None)
            return await self._add(
                PaymentEntity(
                    tenant_id=tenant_id,
                    property_id="property-1",
                    amount=amount,
                    payment_type=payment_type,
                    payment_method=payment_method,
                    status=status,
                    period_start=period_start,
                    period_end=period_end,
                    due_date=due_date or period_start or datetime.now(UTC).date(),
                    processor_intent_id=intent_id,
                    processor_charge_id=charge_id,
                    notes=notes,
                    is_autopay=is_autopay,
                )
            )

        async def reload(self, payment_id: str) -> PaymentEntity | None:
            async with session_maker() as session:
                return await session.get(PaymentEntity, payment_id)

    return Seed()


@pytest.fixture
def gateway() -> MagicMock:
    """Fake processor gateway with happy-path defaults."""
    intents = count(1)

    async def create_intent(customer_id, amount_minor, metadata, **kwargs):
        n = next(intents)
        return ChargeIntent(
            intent_id=f"pi_fake_{n}",
            client_secret=f"pi_fake_{n}_secret",
            status="processing" if kwargs.get("off_session") else "requires_confirmation",
            amount_minor=amount_minor,
        )

    fake = MagicMock()
    fake.create_intent = AsyncMock(side_effect=create_intent)
    fake.get_or_create_customer = AsyncMock(return_value="cus_created")
    fake.refund = AsyncMock(
        return_value=RefundReceipt(refund_id="re_fake_1", amount_minor=117500, status="succeeded")
    )
    fake.verify_and_decode_webhook = MagicMock()
    return fake


@pytest.fixture
def app(session_maker, gateway, billing_config) -> FastAPI:
    """Billing API wired to the temporary ledger and the fake gateway."""
    application = create_application()
    application.dependency_overrides[get_processor_gateway] = lambda: gateway
    return application


@pytest.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
