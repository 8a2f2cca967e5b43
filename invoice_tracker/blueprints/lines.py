"""Invoice line search blueprint."""
from flask import Blueprint, request, jsonify
from invoice_tracker.exceptions import ValidationRejection
from invoice_tracker.services.line_aggregator import search_lines, group_lines, booking_summary
from invoice_tracker.blueprints.reconciliation import get_store, load_engine, save_engine
from invoice_tracker.utils.number_format import parse_decimal

lines_bp = Blueprint('lines', __name__, url_prefix='/lines')


def _cost_arg(name):
    raw = request.args.get(name, '').strip()
    if not raw:
        return None
    try:
        return parse_decimal(raw)
    except ValueError as e:
        raise ValidationRejection(f'Invalid {name}: {e}')


def _filtered_lines(engine):
    return search_lines(
        engine.lines,
        supplier_id=request.args.get('supplier_id', '').strip() or None,
        min_cost=_cost_arg('min_cost'),
        max_cost=_cost_arg('max_cost'),
        description=request.args.get('description', ''),
    )


def _money(totals):
    return {key: str(value) for key, value in totals.items()}


@lines_bp.route('/search')
def search():
    """Lines matching supplier, estimated cost range and description."""
    engine = load_engine()
    lines = _filtered_lines(engine)
    save_engine(engine)
    return jsonify({'lines': [line.to_dict() for line in lines], 'count': len(lines)})


@lines_bp.route('/groups')
def groups():
    """Search results grouped by supplier and booking, with subtotals."""
    engine = load_engine()
    grouped = group_lines(_filtered_lines(engine))
    save_engine(engine)

    result = []
    for group in grouped:
        result.append({
            'supplier_id': group['supplier_id'],
            'supplier_name': group['supplier_name'],
            'totals': _money(group['totals']),
            'bookings': [
                {
                    'booking_number': booking['booking_number'],
                    'selected': booking['selected'],
                    'partially_selected': booking['partially_selected'],
                    'has_unpaid_lines': booking['has_unpaid_lines'],
                    'totals': _money(booking['totals']),
                    'lines': [line.to_dict() for line in booking['lines']],
                }
                for booking in group['bookings']
            ],
        })
    return jsonify({'groups': result})


@lines_bp.route('/bookings/<booking_number>/summary')
def booking(booking_number):
    """Estimated vs registered amounts for one booking."""
    store = get_store()
    summary = booking_summary(
        booking_number,
        store.fetch_line_repository(),
        store.fetch_registration_records(),
    )
    for key in ('estimated_cost', 'estimated_vat', 'estimated_total',
                'registered_cost', 'registered_vat', 'registered_total', 'difference'):
        summary[key] = str(summary[key])
    return jsonify(summary)
