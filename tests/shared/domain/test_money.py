"""Tests for minor-unit money helpers."""

from decimal import Decimal

import pytest
from protean.exceptions import ValidationError
from shared.money import amounts_match, currency_exponent, to_major_string, to_minor_units, validate_currency


class TestConversion:
    @pytest.mark.parametrize(
        "value,currency,expected",
        [
            ("50.00", "USD", 5000),
            (Decimal("19.99"), "USD", 1999),
            ("0.005", "USD", 1),
            (1200, "JPY", 1200),
            ("1.234", "KWD", 1234),
        ],
    )
    def test_to_minor_units(self, value, currency, expected):
        assert to_minor_units(value, currency) == expected

    def test_garbage_amount(self):
        with pytest.raises(ValidationError):
            to_minor_units("fifty", "USD")

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-inf", float("nan"), {"value": "1.00"}, None, True])
    def test_non_numeric_amounts_are_validation_errors(self, value):
        with pytest.raises(ValidationError) as exc_info:
            to_minor_units(value, "USD")
        assert "amount" in exc_info.value.messages

    @pytest.mark.parametrize(
        "minor,currency,expected",
        [(5000, "USD", "50.00"), (5, "usd", "0.05"), (1200, "JPY", "1200"), (1234, "BHD", "1.234")],
    )
    def test_to_major_string(self, minor, currency, expected):
        assert to_major_string(minor, currency) == expected

    def test_exponents(self):
        assert currency_exponent("eur") == 2
        assert currency_exponent("JPY") == 0
        assert currency_exponent("KWD") == 3


class TestComparison:
    def test_exact_match_by_default(self):
        assert amounts_match(5000, 5000)
        assert not amounts_match(5000, 4999)

    def test_tolerance(self):
        assert amounts_match(5000, 4999, tolerance_minor=1)


class TestCurrencyValidation:
    def test_normalises_case(self):
        assert validate_currency("usd") == "USD"

    @pytest.mark.parametrize("currency", ["", "US", "DOLLAR", "U5D"])
    def test_rejects_malformed_codes(self, currency):
        with pytest.raises(ValidationError):
            validate_currency(currency)
