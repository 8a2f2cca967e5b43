"""Number parsing utilities for user-typed amounts."""
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

NUMBER_PATTERN = re.compile(r"^-?\d+(?:\.\d+)?$")
CENT = Decimal('0.01')


def parse_decimal(value, allow_negative: bool = False) -> Decimal:
    """
    Parse a user-typed amount (e.g. "1234.56", "1,234.56" or "1234,56") to Decimal.

    Rules:
    - Spaces are ignored
    - A single comma with no dot is the decimal separator
    - Commas next to a dot are thousands separators
    - NaN/Infinity and blanks are rejected

    Raises:
        ValueError: if the value is invalid, empty or negative (unless allowed).
    """
    if value is None:
        raise ValueError('Invalid amount')

    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        decimal_value = Decimal(value)
    else:
        cleaned = str(value).strip().replace(' ', '')
        if not cleaned:
            raise ValueError('Invalid amount')

        if ',' in cleaned and '.' not in cleaned and cleaned.count(',') == 1:
            cleaned = cleaned.replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')

        if not NUMBER_PATTERN.match(cleaned):
            raise ValueError('Invalid amount')

        try:
            decimal_value = Decimal(cleaned)
        except (InvalidOperation, ValueError):
            raise ValueError('Invalid amount')

    if not decimal_value.is_finite():
        raise ValueError('Invalid amount')

    if decimal_value < 0 and not allow_negative:
        raise ValueError('Amount cannot be negative')

    return decimal_value


def parse_decimal_or_zero(value) -> Decimal:
    """Parse like parse_decimal (negatives allowed) but return 0 for invalid input."""
    try:
        return parse_decimal(value, allow_negative=True)
    except ValueError:
        return Decimal('0')


def to_cents(value: Decimal) -> Decimal:
    """Round an amount to two decimals (half up), the scale money columns store."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
