"""
Money and currency utilities using py-moneyed and Babel.

Provides major/minor unit conversion with proper decimal precision,
locale-aware formatting and processor fee estimates.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from babel import Locale
from babel.core import UnknownLocaleError
from babel.numbers import format_currency, get_currency_precision
from moneyed import Currency, Money, get_currency
from moneyed.classes import CurrencyDoesNotExist

from leasedesk.billing.config import FeeConfig
from leasedesk.billing.enums import InstrumentType

USD = Currency("USD")

# Default locale for formatting
DEFAULT_LOCALE = "en_US"

type AmountLike = int | float | Decimal | str


def _to_decimal(amount: AmountLike) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    try:
        # str() first so floats keep their shortest repr instead of binary noise
        return Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")


class MoneyHandler:
    """Central handler for money operations with proper error handling."""

    def __init__(self, default_currency: str = "USD", default_locale: str = DEFAULT_LOCALE) -> None:
        self.default_currency = self._validate_currency(default_currency)
        self.default_locale = self._validate_locale(default_locale)

    def _validate_currency(self, currency_code: str) -> Currency:
        """Validate and return Currency object."""
        try:
            return get_currency(currency_code.upper())
        except CurrencyDoesNotExist:
            raise ValueError(f"Invalid currency code: {currency_code}")

    def _validate_locale(self, locale_code: str) -> str:
        """Validate locale code."""
        try:
            Locale.parse(locale_code)
            return locale_code
        except (UnknownLocaleError, ValueError):
            return DEFAULT_LOCALE

    @property
    def precision(self) -> int:
        return get_currency_precision(self.default_currency.code)

    def create_money(self, amount: AmountLike) -> Money:
        """Create Money rounded to the currency's precision."""
        quantum = Decimal(1).scaleb(-self.precision)
        rounded = _to_decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)
        return Money(amount=rounded, currency=self.default_currency)

    def format_money(self, amount: AmountLike, locale: str | None = None) -> str:
        """Format an amount with locale-aware formatting."""
        money = self.create_money(amount)
        try:
            return format_currency(
                number=money.amount,
                currency=money.currency.code,
                locale=self._validate_locale(locale or self.default_locale),
            )
        except (TypeError, ValueError):
            return f"{money.currency.code} {money.amount}"

    def to_minor_units(self, amount: AmountLike) -> int:
        """Convert a major-unit amount to minor units (e.g., dollars to cents)."""
        money = self.create_money(amount)
        return int(money.amount.scaleb(self.precision))

    def from_minor_units(self, minor_units: int) -> Decimal:
        """Convert minor units back to a major-unit Decimal."""
        return Decimal(int(minor_units)).scaleb(-self.precision).quantize(
            Decimal(1).scaleb(-self.precision)
        )

    def subtract(self, amount: AmountLike, deduction: AmountLike) -> Decimal:
        """Exact ``amount - deduction`` at currency precision."""
        return (self.create_money(amount) - self.create_money(deduction)).amount

    def to_dict(self, amount: AmountLike) -> dict[str, Any]:
        """Serialize an amount for API responses."""
        money = self.create_money(amount)
        return {
            "amount": str(money.amount),
            "currency": money.currency.code,
            "minor_units": self.to_minor_units(money.amount),
        }


def calculate_processor_fee(
    amount_minor: int, instrument: InstrumentType, fees: FeeConfig | None = None
) -> int:
    """
    Estimate the processor fee for a charge, in minor units.

    Bank debit: percentage of the amount, capped.
    Card: percentage of the amount plus a fixed fee.
    """
    fees = fees or FeeConfig()
    if amount_minor <= 0:
        return 0

    if instrument == InstrumentType.BANK:
        fee = (Decimal(amount_minor) * fees.bank_fee_rate).quantize(
            Decimal(1), rounding=ROUND_HALF_UP
        )
        return min(int(fee), fees.bank_fee_cap_minor)

    fee = (Decimal(amount_minor) * fees.card_fee_rate).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(fee) + fees.card_fee_fixed_minor


# Global instance for convenience
money_handler = MoneyHandler()


def to_minor_units(amount: AmountLike) -> int:
    """Convert major units to minor units with the default handler."""
    return money_handler.to_minor_units(amount)


def from_minor_units(minor_units: int) -> Decimal:
    """Convert minor units to major units with the default handler."""
    return money_handler.from_minor_units(minor_units)


def format_money(amount: AmountLike, locale: str | None = None) -> str:
    """Format an amount with the default handler."""
    return money_handler.format_money(amount, locale)


__all__ = [
    "MoneyHandler",
    "money_handler",
    "to_minor_units",
    "from_minor_units",
    "format_money",
    "calculate_processor_fee",
    "USD",
]
