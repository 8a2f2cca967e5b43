"""
Invoice line aggregation.

Flattens invoices into EnrichedLine records carrying their invoice context,
and provides the search/grouping helpers used by the line search views.
Everything here is pure: no session, no network, no module state.
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from invoice_tracker.models import PaymentStatus, InvoiceType
from invoice_tracker.services.records import EnrichedLine

logger = logging.getLogger(__name__)

NO_BOOKING_LABEL = 'No Booking'

BOOKING_PLACEHOLDER_MIN = 10000000
BOOKING_PLACEHOLDER_SPAN = 90000000  # 10000000..99999999 inclusive

ZERO = Decimal('0')


def _decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _text(value) -> str:
    return '' if value is None else str(value)


def derive_booking_number(line_id: str) -> str:
    """
    Derive a stable 8-digit placeholder booking number from a line id.

    Rolling 32-bit hash (h = h * 31 + unit) over the UTF-16 code units of the
    id, mapped into 10000000..99999999.
    """
    encoded = (line_id or '').encode('utf-16-le')
    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return str(BOOKING_PLACEHOLDER_MIN + abs(h) % BOOKING_PLACEHOLDER_SPAN)


def display_booking_number(line: EnrichedLine) -> str:
    """Booking number to show for a line: the real one, else the placeholder."""
    return line.booking_number or derive_booking_number(line.id)


def _parse_status(raw, line_id) -> PaymentStatus:
    try:
        return PaymentStatus.parse(raw)
    except ValueError:
        logger.warning(f"Line {line_id} has unknown payment status {raw!r}; treating as unpaid")
        return PaymentStatus.UNPAID


def _parse_invoice_type(raw) -> InvoiceType:
    if isinstance(raw, InvoiceType):
        return raw
    if raw in (None, ''):
        return InvoiceType.SINGLE
    try:
        return InvoiceType(str(raw).lower())
    except ValueError:
        return InvoiceType.SINGLE


def enrich_line(line, invoice=None, default_currency: str = 'USD') -> EnrichedLine:
    """
    Build an EnrichedLine from an invoice line (ORM object or attribute bag).

    Missing optional fields are defaulted here, once, so callers never have to
    guess: correlation ids become '', status becomes unpaid.
    """
    supplier = getattr(invoice, 'supplier', None) if invoice is not None else None
    if supplier is None:
        supplier = getattr(line, 'supplier', None)

    quantity = getattr(line, 'quantity', None)
    currency = (
        getattr(line, 'currency', None)
        or (getattr(invoice, 'currency', None) if invoice is not None else None)
        or default_currency
    )

    return EnrichedLine(
        id=str(line.id),
        description=_text(getattr(line, 'description', None)),
        quantity=int(quantity) if quantity is not None else 1,
        unit_price=_decimal(getattr(line, 'unit_price', None)) or ZERO,
        estimated_cost=_decimal(getattr(line, 'estimated_cost', None)) or ZERO,
        supplier_id=_text(getattr(line, 'supplier_id', None)),
        supplier_name=_text(getattr(line, 'supplier_name', None)),
        supplier_part_number=_text(getattr(line, 'supplier_part_number', None)),
        invoice_id=_text(getattr(invoice, 'id', None)) if invoice is not None else '',
        invoice_number=_text(getattr(invoice, 'invoice_number', None)) if invoice is not None else '',
        invoice_total_amount=(_decimal(getattr(invoice, 'total_amount', None)) or ZERO) if invoice is not None else ZERO,
        actual_cost=_decimal(getattr(line, 'actual_cost', None)),
        estimated_vat=_decimal(getattr(line, 'estimated_vat', None)),
        actual_vat=_decimal(getattr(line, 'actual_vat', None)),
        currency=currency,
        booking_number=_text(getattr(line, 'booking_number', None)),
        confirmation_number=_text(getattr(line, 'confirmation_number', None)),
        departure_date=_text(getattr(line, 'departure_date', None)),
        payment_status=_parse_status(getattr(line, 'payment_status', None), line.id),
        fully_invoiced=bool(getattr(line, 'fully_invoiced', False)),
        invoice_type=_parse_invoice_type(getattr(line, 'invoice_type', None)),
        supplier_account_number=_text(getattr(supplier, 'account_number', None)),
        supplier_default_currency=_text(getattr(supplier, 'default_currency', None)),
        supplier_currency_rate=_decimal(getattr(supplier, 'currency_rate', None)),
    )


def aggregate(invoices: Iterable, default_currency: str = 'USD') -> List[EnrichedLine]:
    """Flatten every line of every invoice, in invoice order then line order."""
    enriched = []
    for invoice in invoices:
        for line in invoice.lines or []:
            enriched.append(enrich_line(line, invoice, default_currency))
    return enriched


def aggregate_line_repository(lines: Iterable, default_currency: str = 'USD') -> List[EnrichedLine]:
    """Enrich standalone lines, using their parent invoice when they have one."""
    return [
        enrich_line(line, getattr(line, 'invoice', None), default_currency)
        for line in lines
    ]


def search_lines(lines: Iterable[EnrichedLine],
                 supplier_id: Optional[str] = None,
                 min_cost: Optional[Decimal] = None,
                 max_cost: Optional[Decimal] = None,
                 description: Optional[str] = None) -> List[EnrichedLine]:
    """Filter lines by supplier, estimated cost range and description text."""
    needle = (description or '').strip().lower()
    results = []
    for line in lines:
        if supplier_id and line.supplier_id != supplier_id:
            continue
        if min_cost is not None and line.estimated_cost < min_cost:
            continue
        if max_cost is not None and line.estimated_cost > max_cost:
            continue
        if needle and needle not in line.description.lower():
            continue
        results.append(line)
    return results


def line_subtotals(lines: Iterable[EnrichedLine]) -> Dict[str, Decimal]:
    totals = {'estimated_cost': ZERO, 'actual_cost': ZERO, 'registered_cost': ZERO}
    for line in lines:
        totals['estimated_cost'] += line.estimated_cost
        totals['actual_cost'] += line.actual_cost or ZERO
        totals['registered_cost'] += line.registered_actual_cost or ZERO
    return totals


def booking_selection_flags(lines: List[EnrichedLine]) -> Dict[str, bool]:
    """Whether all / some of the selectable lines of a booking are selected."""
    selectable = [line for line in lines if not line.is_paid]
    selected = [line for line in selectable if line.selected]
    return {
        'selected': bool(selectable) and len(selected) == len(selectable),
        'partially_selected': 0 < len(selected) < len(selectable),
        'has_unpaid_lines': bool(selectable),
    }


def group_lines(lines: Iterable[EnrichedLine]) -> List[dict]:
    """
    Group lines by supplier, then by booking number, with subtotals.

    Group order follows first appearance in `lines`.
    """
    suppliers: Dict[str, dict] = {}
    for line in lines:
        supplier_key = f"{line.supplier_id}-{line.supplier_name}"
        group = suppliers.setdefault(supplier_key, {
            'supplier_id': line.supplier_id,
            'supplier_name': line.supplier_name,
            'bookings': {},
        })
        booking_key = line.booking_number or NO_BOOKING_LABEL
        group['bookings'].setdefault(booking_key, []).append(line)

    result = []
    for group in suppliers.values():
        bookings = []
        all_lines = []
        for booking_number, booking_lines in group['bookings'].items():
            all_lines.extend(booking_lines)
            booking = {
                'booking_number': booking_number,
                'lines': booking_lines,
                'totals': line_subtotals(booking_lines),
            }
            booking.update(booking_selection_flags(booking_lines))
            bookings.append(booking)
        result.append({
            'supplier_id': group['supplier_id'],
            'supplier_name': group['supplier_name'],
            'bookings': bookings,
            'totals': line_subtotals(all_lines),
        })
    return result


def booking_summary(booking_number: str,
                    lines: Iterable[EnrichedLine],
                    records: Iterable) -> dict:
    """
    Estimated vs registered amounts for one booking.

    `records` may contain registrations for any line; only those pointing at
    a line of this booking are counted.
    """
    booking_lines = [line for line in lines if (line.booking_number or NO_BOOKING_LABEL) == booking_number]
    line_ids = {line.id for line in booking_lines}
    booking_records = [record for record in records if record.invoice_line_id in line_ids]

    estimated_cost = sum((line.estimated_cost for line in booking_lines), ZERO)
    estimated_vat = sum((line.estimated_vat or ZERO for line in booking_lines), ZERO)
    registered_cost = sum((record.actual_cost for record in booking_records), ZERO)
    registered_vat = sum((record.actual_vat for record in booking_records), ZERO)

    suppliers = []
    for record in booking_records:
        if record.supplier_name and record.supplier_name not in suppliers:
            suppliers.append(record.supplier_name)

    delta = (registered_cost + registered_vat) - (estimated_cost + estimated_vat)
    currency = booking_lines[0].currency if booking_lines else ''

    return {
        'booking_number': booking_number,
        'currency': currency,
        'line_count': len(booking_lines),
        'suppliers': suppliers,
        'estimated_cost': estimated_cost,
        'estimated_vat': estimated_vat,
        'estimated_total': estimated_cost + estimated_vat,
        'registered_cost': registered_cost,
        'registered_vat': registered_vat,
        'registered_total': registered_cost + registered_vat,
        'difference': abs(delta),
        'direction': 'over' if delta > 0 else 'under',
    }
