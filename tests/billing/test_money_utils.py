"""
Tests for money conversion, formatting and processor fee estimates.
"""

from decimal import Decimal

import pytest

from leasedesk.billing.config import FeeConfig
from leasedesk.billing.enums import InstrumentType
from leasedesk.billing.money_utils import (
    MoneyHandler,
    calculate_processor_fee,
    format_money,
    from_minor_units,
    money_handler,
    to_minor_units,
)

pytestmark = pytest.mark.unit


class TestMinorUnits:
    def test_whole_amount_to_cents(self):
        assert to_minor_units(Decimal("1175.00")) == 117500

    def test_float_amount_has_no_binary_noise(self):
        # 19.99 is not exactly representable as a float
        assert to_minor_units(19.99) == 1999
        assert to_minor_units(0.1 + 0.2) == 30

    def test_half_cent_rounds_half_up(self):
        assert to_minor_units("10.005") == 1001
        assert to_minor_units("10.004") == 1000

    def test_string_and_int_inputs(self):
        assert to_minor_units("12.3") == 1230
        assert to_minor_units(5) == 500

    def test_from_minor_units_is_two_place_decimal(self):
        value = from_minor_units(117500)
        assert value == Decimal("1175.00")
        assert value.as_tuple().exponent == -2

    def test_invalid_amount_raises(self):
        with pytest.raises(ValueError, match="Invalid amount"):
            to_minor_units("twelve")


class TestMoneyHandler:
    def test_subtract_is_exact(self):
        assert money_handler.subtract(Decimal("1200.00"), Decimal("25.00")) == Decimal("1175.00")
        assert money_handler.subtract("0.30", "0.10") == Decimal("0.20")

    def test_subtract_can_go_negative(self):
        assert money_handler.subtract("20.00", "25.00") == Decimal("-5.00")

    def test_format_money_uses_locale(self):
        assert format_money(Decimal("25")) == "$25.00"
        assert format_money(Decimal("1175.5")) == "$1,175.50"

    def test_unknown_locale_falls_back_to_default(self):
        handler = MoneyHandler(default_locale="xx_NOPE")
        assert handler.default_locale == "en_US"

    def test_invalid_currency_rejected(self):
        with pytest.raises(ValueError, match="Invalid currency code"):
            MoneyHandler(default_currency="ZZZ")

    def test_to_dict(self):
        assert money_handler.to_dict("12.5") == {
            "amount": "12.50",
            "currency": "USD",
            "minor_units": 1250,
        }


class TestProcessorFee:
    def test_bank_fee_is_percentage(self):
        # 0.8% of $100.00
        assert calculate_processor_fee(10000, InstrumentType.BANK) == 80

    def test_bank_fee_is_capped(self):
        assert calculate_processor_fee(117500, InstrumentType.BANK) == 500

    def test_card_fee_is_percentage_plus_fixed(self):
        # 2.9% of $1175.00 = 3407.5 -> 3408, plus 30
        assert calculate_processor_fee(117500, InstrumentType.CARD) == 3438

    def test_zero_amount_has_no_fee(self):
        assert calculate_processor_fee(0, InstrumentType.CARD) == 0

    def test_custom_schedule(self):
        fees = FeeConfig(card_fee_rate=Decimal("0.01"), card_fee_fixed_minor=0)
        assert calculate_processor_fee(10000, InstrumentType.CARD, fees) == 100
