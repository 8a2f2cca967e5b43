"""Invoice service with transactional logic."""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload

from invoice_tracker.exceptions import BusinessLogicError, NotFoundError, PersistenceError
from invoice_tracker.models import (
    Invoice, InvoiceLine, InvoiceSource, InvoiceStatus, InvoiceType,
    PaymentStatus, Supplier, SupplierInvoiceLine,
)
from invoice_tracker.services.cache_service import get_cache
from invoice_tracker.services.invoice_store import LINES_CACHE_MODULE
from invoice_tracker.utils.currency import lookup_rate, to_base_currency
from invoice_tracker.utils.number_format import parse_decimal, to_cents

logger = logging.getLogger(__name__)

HEADER_TEXT_FIELDS = ('reference', 'notes', 'ocr', 'account', 'vat_account')
LINE_TEXT_FIELDS = ('supplier_part_number', 'booking_number', 'confirmation_number', 'departure_date')


def invalidate_lines_cache() -> None:
    """Drop the cached line repository after an invoice write."""
    try:
        cache = get_cache()
    except RuntimeError:
        logger.debug("Cache not initialized; nothing to invalidate")
        return
    cache.invalidate_module(LINES_CACHE_MODULE)


def _parse_date(value, field: str, required: bool = False) -> Optional[date]:
    if value in (None, ''):
        if required:
            raise BusinessLogicError(f'{field} is required')
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except ValueError:
        raise BusinessLogicError(f'Invalid {field}: {value}')


def _parse_amount(value, field: str, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value in (None, ''):
        return default
    try:
        return to_cents(parse_decimal(value))
    except ValueError as e:
        raise BusinessLogicError(f'Invalid {field}: {e}')


def _parse_enum(enum_cls, value, field: str, default):
    if value in (None, ''):
        return default
    if isinstance(value, enum_cls):
        return value
    for member in enum_cls:
        if member.value.lower() == str(value).strip().lower():
            return member
    raise BusinessLogicError(f'Invalid {field}: {value}')


def _parse_period(value, field: str, low: int, high: int) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise BusinessLogicError(f'Invalid {field}: {value}')
    if not low <= number <= high:
        raise BusinessLogicError(f'{field} must be between {low} and {high}')
    return number


def _validate_line(raw: dict, index: int) -> dict:
    """
    Validate one submitted line.

    The estimated cost is always quantity x unit price; a submitted
    estimated_cost is ignored.
    """
    description = (raw.get('description') or '').strip()
    if not description:
        raise BusinessLogicError(f'Line {index}: description is required')

    try:
        quantity = int(str(raw.get('quantity', 1)).strip())
    except (TypeError, ValueError):
        raise BusinessLogicError(f'Line {index}: quantity must be a whole number')
    if quantity < 1:
        raise BusinessLogicError(f'Line {index}: quantity must be at least 1')

    unit_price = _parse_amount(raw.get('unit_price'), f'unit price on line {index}', Decimal('0.00'))

    data = {
        'id': raw.get('id'),
        'description': description,
        'quantity': quantity,
        'unit_price': unit_price,
        'estimated_cost': to_cents(unit_price * quantity),
        'estimated_vat': _parse_amount(raw.get('estimated_vat'), f'estimated VAT on line {index}'),
        'currency': (raw.get('currency') or '').strip().upper() or None,
        'invoice_type': _parse_enum(InvoiceType, raw.get('invoice_type'), 'invoice type', InvoiceType.SINGLE),
        'fully_invoiced': bool(raw.get('fully_invoiced', False)),
    }
    for field in LINE_TEXT_FIELDS:
        data[field] = (raw.get(field) or '').strip() or None
    data['supplier_part_number'] = data['supplier_part_number'] or ''
    return data


def _validate_header(payload: dict, session, default_currency: str) -> dict:
    supplier_id = payload.get('supplier_id')
    if not supplier_id:
        raise BusinessLogicError('Supplier is required')
    supplier = session.query(Supplier).filter(Supplier.id == supplier_id).first()
    if not supplier:
        raise BusinessLogicError(f'Supplier {supplier_id} not found')

    invoice_number = (payload.get('invoice_number') or '').strip()
    if not invoice_number:
        raise BusinessLogicError('Invoice number is required')

    lines = payload.get('lines') or []
    if not lines:
        raise BusinessLogicError('Add at least one line to the invoice')

    currency = (
        (payload.get('currency') or '').strip().upper()
        or supplier.default_currency
        or default_currency
    )

    header = {
        'supplier': supplier,
        'invoice_number': invoice_number,
        'invoice_date': _parse_date(payload.get('invoice_date'), 'invoice date'),
        'due_date': _parse_date(payload.get('due_date'), 'due date', required=True),
        'status': _parse_enum(InvoiceStatus, payload.get('status'), 'status', InvoiceStatus.PENDING),
        'source': _parse_enum(InvoiceSource, payload.get('source'), 'source', InvoiceSource.MANUAL),
        'currency': currency,
        'vat': _parse_amount(payload.get('vat'), 'VAT'),
        'total_vat': _parse_amount(payload.get('total_vat'), 'total VAT'),
        'total_amount': _parse_amount(payload.get('total_amount'), 'total amount'),
        'periodization_year': _parse_period(payload.get('periodization_year'), 'periodization year', 1900, 2999),
        'periodization_month': _parse_period(payload.get('periodization_month'), 'periodization month', 1, 12),
        'lines': [_validate_line(raw, i) for i, raw in enumerate(lines, start=1)],
    }
    for field in HEADER_TEXT_FIELDS:
        header[field] = (payload.get(field) or '').strip() or None
    header['reference'] = header['reference'] or ''

    if header['total_amount'] is None:
        header['total_amount'] = sum((line['estimated_cost'] for line in header['lines']), Decimal('0.00'))
    return header


def _check_duplicate_number(session, supplier, invoice_number: str, exclude_id: Optional[str] = None) -> None:
    query = session.query(Invoice).filter(
        Invoice.supplier_id == supplier.id,
        Invoice.invoice_number == invoice_number
    )
    if exclude_id:
        query = query.filter(Invoice.id != exclude_id)
    if query.first():
        raise BusinessLogicError(
            f'Invoice "{invoice_number}" already exists for supplier "{supplier.name}"'
        )


def _apply_header(invoice: Invoice, header: dict) -> None:
    invoice.supplier_id = header['supplier'].id
    for field in ('invoice_number', 'invoice_date', 'due_date', 'status', 'source', 'currency',
                  'vat', 'total_vat', 'total_amount', 'periodization_year', 'periodization_month') + HEADER_TEXT_FIELDS:
        setattr(invoice, field, header[field])


def _apply_line(line: InvoiceLine, data: dict, supplier: Supplier, currency: str, position: int) -> None:
    line.description = data['description']
    line.position = position
    line.quantity = data['quantity']
    line.unit_price = data['unit_price']
    line.estimated_cost = data['estimated_cost']
    line.estimated_vat = data['estimated_vat']
    line.currency = data['currency'] or currency
    line.supplier_id = supplier.id
    line.supplier_name = supplier.name
    line.invoice_type = data['invoice_type']
    line.fully_invoiced = data['fully_invoiced']
    for field in LINE_TEXT_FIELDS:
        setattr(line, field, data[field])


def _commit(session, action: str) -> None:
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.error(f"Integrity error while {action}: {e.orig}", exc_info=True)
        raise BusinessLogicError(f'Integrity error while {action}')
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error while {action}: {e}", exc_info=True)
        raise PersistenceError(f'Could not save changes while {action}')
    invalidate_lines_cache()


def create_invoice_with_lines(payload: dict, session, default_currency: str = 'USD') -> str:
    """
    Create an invoice with its lines.

    Steps:
    1. Validate supplier, invoice number, dates and lines
    2. Reject a duplicate invoice number for the same supplier
    3. Create invoice + invoice_line rows (estimated cost = quantity x unit price)
    4. Commit and drop the cached line repository

    Args:
        payload: Dictionary with:
            - supplier_id: str
            - invoice_number: str
            - due_date: date | 'YYYY-MM-DD'
            - invoice_date, currency, total_amount, vat, total_vat, ... (optional)
            - lines: list of {description, quantity, unit_price, ...}
        session: SQLAlchemy session

    Returns:
        invoice_id: ID of created invoice

    Raises:
        BusinessLogicError: invalid payload or duplicate invoice number
        PersistenceError: the database write failed
    """
    try:
        header = _validate_header(payload, session, default_currency)
        supplier = header['supplier']
        _check_duplicate_number(session, supplier, header['invoice_number'])

        invoice = Invoice()
        _apply_header(invoice, header)
        session.add(invoice)
        session.flush()

        for position, data in enumerate(header['lines']):
            line = InvoiceLine(invoice_id=invoice.id, payment_status=PaymentStatus.UNPAID)
            _apply_line(line, data, supplier, header['currency'], position)
            session.add(line)
    except BusinessLogicError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error while saving invoice: {e}", exc_info=True)
        raise PersistenceError('Could not save invoice')

    _commit(session, 'creating invoice')
    logger.info(f"Created invoice {invoice.invoice_number} ({invoice.id}) with {len(header['lines'])} line(s)")
    return invoice.id


def update_invoice_with_lines(invoice_id: str, payload: dict, session, default_currency: str = 'USD') -> str:
    """
    Update an invoice header and upsert its lines by id.

    Lines missing from the payload are deleted, unless costs were already
    registered against them. Payment status and actual amounts of existing
    lines are left alone.
    """
    invoice = get_invoice(invoice_id, session)
    try:
        header = _validate_header(payload, session, default_currency)
        supplier = header['supplier']
        _check_duplicate_number(session, supplier, header['invoice_number'], exclude_id=invoice.id)

        existing = {line.id: line for line in invoice.lines}
        submitted_ids = {data['id'] for data in header['lines'] if data['id']}

        unknown = submitted_ids - set(existing)
        if unknown:
            raise BusinessLogicError(f'Line {sorted(unknown)[0]} does not belong to this invoice')

        removed = [line for line_id, line in existing.items() if line_id not in submitted_ids]
        for line in removed:
            registered = session.query(SupplierInvoiceLine).filter(
                SupplierInvoiceLine.invoice_line_id == line.id
            ).count()
            if registered:
                raise BusinessLogicError(
                    f'Line "{line.description}" has registered costs and cannot be removed'
                )

        _apply_header(invoice, header)
        for line in removed:
            invoice.lines.remove(line)

        for position, data in enumerate(header['lines']):
            line = existing.get(data['id'])
            if line is None:
                line = InvoiceLine(payment_status=PaymentStatus.UNPAID)
                invoice.lines.append(line)
            _apply_line(line, data, supplier, header['currency'], position)
    except BusinessLogicError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error while saving invoice: {e}", exc_info=True)
        raise PersistenceError('Could not save invoice')

    _commit(session, 'updating invoice')
    logger.info(f"Updated invoice {invoice.invoice_number} ({invoice.id})")
    return invoice.id


def get_invoice(invoice_id: str, session) -> Invoice:
    invoice = (
        session.query(Invoice)
        .options(selectinload(Invoice.lines), selectinload(Invoice.supplier))
        .filter(Invoice.id == invoice_id)
        .first()
    )
    if not invoice:
        raise NotFoundError(f'Invoice {invoice_id} not found')
    return invoice


def list_invoices(session, status=None, supplier_id: Optional[str] = None,
                  search: Optional[str] = None) -> List[Invoice]:
    """Invoices newest first, filtered by status, supplier and number/reference text."""
    query = session.query(Invoice).options(selectinload(Invoice.supplier), selectinload(Invoice.lines))

    if status:
        query = query.filter(Invoice.status == _parse_enum(InvoiceStatus, status, 'status', None))
    if supplier_id:
        query = query.filter(Invoice.supplier_id == supplier_id)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Invoice.invoice_number.ilike(pattern),
            Invoice.reference.ilike(pattern),
        ))

    return query.order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc()).all()


def summarize_invoices(invoices, base_currency: str = 'SEK') -> dict:
    """
    Pending / paid / overdue totals in the base currency.

    Each invoice is converted with its supplier's currency rate.
    """
    totals = {status: Decimal('0.00') for status in InvoiceStatus}
    counts = {status: 0 for status in InvoiceStatus}

    for invoice in invoices:
        supplier = invoice.supplier
        rate = lookup_rate(invoice.currency, supplier.currency_rate if supplier else None, base_currency)
        totals[invoice.status] += to_base_currency(invoice.total_amount, rate)
        counts[invoice.status] += 1

    summary = {'currency': base_currency, 'count': sum(counts.values())}
    for status in InvoiceStatus:
        summary[status.value] = {'count': counts[status], 'total': totals[status]}
    summary['total'] = sum(totals.values(), Decimal('0.00'))
    return summary
