"""Currency rate lookup helpers."""
from decimal import Decimal
from typing import Optional, Union

from invoice_tracker.utils.formatters import to_decimal


def lookup_rate(currency: Optional[str],
                supplier_rate: Union[Decimal, float, str, None],
                base_currency: str) -> Decimal:
    """
    Return the rate that converts an amount in `currency` into `base_currency`.

    The rate is 1 when the amount is already in the base currency, or when
    no usable rate is known for the supplier.
    """
    if not currency or currency.upper() == (base_currency or '').upper():
        return Decimal('1')

    rate = to_decimal(supplier_rate)
    if rate is None or not rate.is_finite() or rate <= 0:
        return Decimal('1')
    return rate


def to_base_currency(amount: Union[Decimal, float, str, None], rate: Decimal) -> Decimal:
    """Convert an amount with the given rate, rounded to cents."""
    value = to_decimal(amount) or Decimal('0')
    return (value * rate).quantize(Decimal('0.01'))
