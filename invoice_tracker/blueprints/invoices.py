"""Invoices blueprint for supplier invoice management."""
from flask import Blueprint, request, current_app, jsonify
from invoice_tracker.database import get_session
from invoice_tracker.exceptions import BusinessLogicError
from invoice_tracker.services.invoice_service import (
    create_invoice_with_lines, update_invoice_with_lines, get_invoice, list_invoices, summarize_invoices
)
from invoice_tracker.utils.formatters import format_currency, format_date

invoices_bp = Blueprint('invoices', __name__, url_prefix='/invoices')


def _str(value):
    return None if value is None else str(value)


def serialize_line(line):
    return {
        'id': line.id,
        'description': line.description,
        'position': line.position,
        'quantity': line.quantity,
        'unit_price': _str(line.unit_price),
        'estimated_cost': _str(line.estimated_cost),
        'actual_cost': _str(line.actual_cost),
        'estimated_vat': _str(line.estimated_vat),
        'actual_vat': _str(line.actual_vat),
        'currency': line.currency,
        'supplier_id': line.supplier_id,
        'supplier_name': line.supplier_name,
        'supplier_part_number': line.supplier_part_number,
        'booking_number': line.booking_number or '',
        'confirmation_number': line.confirmation_number or '',
        'departure_date': line.departure_date or '',
        'payment_status': line.payment_status.value if line.payment_status else 'unpaid',
        'fully_invoiced': bool(line.fully_invoiced),
        'invoice_type': line.invoice_type.value if line.invoice_type else 'single',
    }


def serialize_invoice(invoice, with_lines=True):
    data = {
        'id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'reference': invoice.reference,
        'supplier_id': invoice.supplier_id,
        'supplier_name': invoice.supplier.name if invoice.supplier else None,
        'status': invoice.status.value,
        'invoice_date': invoice.invoice_date.isoformat() if invoice.invoice_date else None,
        'due_date': invoice.due_date.isoformat() if invoice.due_date else None,
        'due_date_display': format_date(invoice.due_date),
        'total_amount': _str(invoice.total_amount),
        'total_amount_display': format_currency(invoice.total_amount, invoice.currency or 'USD'),
        'vat': _str(invoice.vat),
        'total_vat': _str(invoice.total_vat),
        'currency': invoice.currency,
        'notes': invoice.notes,
        'ocr': invoice.ocr,
        'source': invoice.source.value if invoice.source else None,
        'account': invoice.account,
        'vat_account': invoice.vat_account,
        'periodization_year': invoice.periodization_year,
        'periodization_month': invoice.periodization_month,
    }
    if with_lines:
        data['lines'] = [serialize_line(line) for line in invoice.lines]
    return data


def _json_payload():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise BusinessLogicError('Expected a JSON object')
    return payload


@invoices_bp.route('/')
def list_all():
    """List invoices, filtered by status, supplier and number/reference text."""
    db_session = get_session()
    invoices = list_invoices(
        db_session,
        status=request.args.get('status', '').strip() or None,
        supplier_id=request.args.get('supplier_id', '').strip() or None,
        search=request.args.get('q', '').strip() or None,
    )
    return jsonify({'invoices': [serialize_invoice(invoice, with_lines=False) for invoice in invoices]})


@invoices_bp.route('/summary')
def summary():
    """Pending / paid / overdue totals converted to the base currency."""
    db_session = get_session()
    base_currency = current_app.config.get('BASE_CURRENCY', 'SEK')
    result = summarize_invoices(list_invoices(db_session), base_currency)
    for status in ('pending', 'paid', 'overdue'):
        result[status]['total_display'] = format_currency(result[status]['total'], base_currency)
        result[status]['total'] = str(result[status]['total'])
    result['total_display'] = format_currency(result['total'], base_currency)
    result['total'] = str(result['total'])
    return jsonify(result)


@invoices_bp.route('/<invoice_id>')
def view(invoice_id):
    db_session = get_session()
    return jsonify(serialize_invoice(get_invoice(invoice_id, db_session)))


@invoices_bp.route('/', methods=['POST'])
def create():
    """Create an invoice with its lines."""
    db_session = get_session()
    payload = _json_payload()
    invoice_id = create_invoice_with_lines(
        payload, db_session, default_currency=current_app.config.get('DEFAULT_CURRENCY', 'USD')
    )
    current_app.logger.info(f"[INVOICE] Created invoice {invoice_id}")
    return jsonify(serialize_invoice(get_invoice(invoice_id, db_session))), 201


@invoices_bp.route('/<invoice_id>', methods=['PUT'])
def update(invoice_id):
    """Update an invoice header and its lines."""
    db_session = get_session()
    payload = _json_payload()
    update_invoice_with_lines(
        invoice_id, payload, db_session, default_currency=current_app.config.get('DEFAULT_CURRENCY', 'USD')
    )
    current_app.logger.info(f"[INVOICE] Updated invoice {invoice_id}")
    return jsonify(serialize_invoice(get_invoice(invoice_id, db_session)))
