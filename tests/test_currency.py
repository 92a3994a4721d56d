"""
Test suite for the Money type

Parsing of user-supplied amounts, rounding to cents, and checked arithmetic.
"""

import pytest
from decimal import Decimal

from bank_ledger.currency import Money
from bank_ledger.errors import InvalidAmount, NonPositiveAmount, Underflow


class TestMoneyParse:
    """Test parsing of monetary instructions"""

    def test_parse_plain_string(self):
        assert Money.parse("500").cents == 50000
        assert Money.parse("12.34").cents == 1234

    def test_parse_strips_commas_and_whitespace(self):
        assert Money.parse(" 1,234.50 ").cents == 123450
        assert Money.parse("1,000,000").cents == 100000000

    def test_parse_numbers(self):
        assert Money.parse(250).cents == 25000
        assert Money.parse(0.1).cents == 10
        assert Money.parse(Decimal("99.99")).cents == 9999

    def test_rounds_half_away_from_zero(self):
        assert Money.parse("0.005").cents == 1
        assert Money.parse("1.015").cents == 102
        assert Money.parse("2.675").cents == 268
        assert Money.parse("10.004").cents == 1000

    def test_invalid_inputs(self):
        for value in [None, "", "   ", "abc", "12.3.4", True, "NaN", "Infinity", "-inf", "1e30", 1e300]:
            with pytest.raises(InvalidAmount):
                Money.parse(value)

    def test_out_of_range_stored_value(self):
        with pytest.raises(InvalidAmount):
            Money.from_decimal("1e40")

    def test_non_positive_inputs(self):
        for value in ["0", "-5", -1, 0, "0.00", "0.004"]:
            with pytest.raises(NonPositiveAmount):
                Money.parse(value)

    def test_non_positive_is_invalid_amount(self):
        with pytest.raises(InvalidAmount):
            Money.parse("-1")

    def test_error_codes(self):
        with pytest.raises(InvalidAmount) as exc_info:
            Money.parse("abc")
        assert exc_info.value.code == "invalid_amount"

        with pytest.raises(NonPositiveAmount) as exc_info:
            Money.parse("0")
        assert exc_info.value.code == "non_positive_amount"


class TestMoneyArithmetic:
    """Test Money arithmetic and formatting"""

    def test_add_and_subtract(self):
        a = Money.from_cents(1000)
        b = Money.from_cents(250)
        assert (a + b).cents == 1250
        assert a.add(b) == Money.from_cents(1250)
        assert a.subtract(b) == Money.from_cents(750)

    def test_subtract_underflow(self):
        with pytest.raises(Underflow):
            Money.from_cents(100).subtract(Money.from_cents(101))

    def test_subtract_underflow_allowed(self):
        result = Money.from_cents(100).subtract(Money.from_cents(101), allow_underflow=True)
        assert result.cents == -1
        assert result.is_negative()

    def test_exact_subtraction_to_zero(self):
        assert Money.from_cents(500).subtract(Money.from_cents(500)).is_zero()

    def test_ordering(self):
        assert Money.from_cents(100) < Money.from_cents(200)
        assert Money.from_cents(200) >= Money.from_cents(200)
        assert max(Money.from_cents(5), Money.from_cents(7)) == Money.from_cents(7)

    def test_format(self):
        assert Money.from_cents(123456).format() == "1234.56"
        assert Money.from_cents(5).format() == "0.05"
        assert Money.zero().format() == "0.00"
        assert str(Money.from_cents(100000000)) == "1000000.00"

    def test_from_decimal_allows_zero(self):
        assert Money.from_decimal("0.00").is_zero()
        assert Money.from_decimal("1234.56") == Money.from_cents(123456)

    def test_from_decimal_rejects_garbage(self):
        with pytest.raises(InvalidAmount):
            Money.from_decimal("not money")

    def test_to_decimal(self):
        assert Money.from_cents(1999).to_decimal() == Decimal("19.99")

    def test_cents_must_be_int(self):
        with pytest.raises(TypeError):
            Money(1.5)
        with pytest.raises(TypeError):
            Money(True)

    def test_immutable(self):
        money = Money.from_cents(100)
        with pytest.raises(Exception):
            money.cents = 200
