"""Minor-unit money helpers.

Order totals are integers in the currency's minor unit (cents for USD).
Gateways speak decimal strings in the major unit ("50.00").
"""

from decimal import ROUND_HALF_UP, Decimal

from protean.exceptions import ValidationError

# ISO 4217 exponents that differ from the default of 2
_ZERO_DECIMAL = frozenset({"JPY", "KRW", "TWD", "HUF", "CLP", "VND", "ISK"})
_THREE_DECIMAL = frozenset({"KWD", "BHD", "OMR", "JOD", "TND"})


def currency_exponent(currency: str) -> int:
    code = currency.upper()
    if code in _ZERO_DECIMAL:
        return 0
    if code in _THREE_DECIMAL:
        return 3
    return 2


def validate_currency(currency: str) -> str:
    if not currency or len(currency) != 3 or not currency.isalpha():
        raise ValidationError({"currency": [f"Invalid currency code: {currency!r}"]})
    return currency.upper()


def to_minor_units(value, currency: str) -> int:
    """Convert a major-unit decimal (str/Decimal/int/float) to integer minor units.

    Raises:
        ValidationError: the value is not a finite decimal number.
    """
    exponent = currency_exponent(currency)
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
        raise ValidationError({"amount": [f"Invalid amount: {value!r}"]})
    try:
        amount = Decimal(str(value).strip())
    except ArithmeticError as exc:
        raise ValidationError({"amount": [f"Invalid amount: {value!r}"]}) from exc
    if not amount.is_finite():
        raise ValidationError({"amount": [f"Amount must be a finite number: {value!r}"]})
    return int((amount * (Decimal(10) ** exponent)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_major_string(minor: int, currency: str) -> str:
    """Format minor units as the gateway's decimal string, e.g. 5000 -> "50.00"."""
    exponent = currency_exponent(currency)
    amount = Decimal(minor) / (Decimal(10) ** exponent)
    return f"{amount:.{exponent}f}"


def amounts_match(expected_minor: int, actual_minor: int, tolerance_minor: int = 0) -> bool:
    """True when two minor-unit amounts differ by no more than the tolerance."""
    return abs(expected_minor - actual_minor) <= tolerance_minor
