"""
Formatting helpers for money and dates.
Amounts are rendered en-US style: comma thousands separator, dot decimals.
"""
from decimal import Decimal, InvalidOperation
from datetime import date, datetime
from typing import Union, Optional


CURRENCY_SYMBOLS = {
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
    'JPY': '¥',
}

MONTH_ABBREVIATIONS = (
    'Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
    'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec',
)


def to_decimal(value: Union[int, float, Decimal, str, None]) -> Optional[Decimal]:
    """Convert a value to Decimal, returning None when it is not a number."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats keep their printed value (0.1 -> 0.1)
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


def format_number(value: Union[int, float, Decimal, str, None], decimals: int = 2) -> str:
    """
    Format a number with thousands separators and a fixed number of decimals.

    Examples:
        format_number(1500) -> "1,500.00"
        format_number(-1234.5) -> "-1,234.50"
        format_number(None) -> "-"
    """
    num = to_decimal(value)
    if num is None or not num.is_finite():
        return "-"

    num = num.quantize(Decimal(10) ** -decimals)
    sign = "-" if num < 0 else ""
    num = abs(num)

    if decimals > 0:
        integer_part, decimal_part = f"{num:.{decimals}f}".split(".")
    else:
        integer_part, decimal_part = f"{num:.0f}", ""

    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    integer_formatted = ','.join(groups)[::-1]

    if decimal_part:
        return f"{sign}{integer_formatted}.{decimal_part}"
    return f"{sign}{integer_formatted}"


def format_currency(value: Union[int, float, Decimal, str, None], currency: Optional[str] = 'USD') -> str:
    """
    Format a monetary amount with its currency.

    Known currencies get their symbol, others are prefixed with the ISO code.
    A falsy currency falls back to USD.

    Examples:
        format_currency(1234.5) -> "$1,234.50"
        format_currency(-20, 'EUR') -> "-€20.00"
        format_currency(99, 'SEK') -> "SEK 99.00"
    """
    formatted = format_number(value)
    if formatted == "-":
        return formatted

    code = (currency or 'USD').upper()
    sign = ""
    if formatted.startswith("-"):
        sign, formatted = "-", formatted[1:]

    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{sign}{symbol}{formatted}"
    return f"{sign}{code} {formatted}"


def format_date(value: Union[date, datetime, str, None]) -> str:
    """
    Format a date as "Jan 5, 2025".

    ISO strings (with or without time part) are accepted.
    Returns "-" for empty or unparsable values.
    """
    if value is None or value == "":
        return "-"

    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return "-"

    if isinstance(value, datetime):
        value = value.date()

    if not isinstance(value, date):
        return "-"

    return f"{MONTH_ABBREVIATIONS[value.month - 1]} {value.day}, {value.year}"
