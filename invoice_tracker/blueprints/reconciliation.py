"""Reconciliation blueprint: select lines, edit actual amounts, register costs."""
from flask import Blueprint, request, session, current_app, jsonify
from invoice_tracker.database import get_session
from invoice_tracker.exceptions import BusinessLogicError, PersistenceError
from invoice_tracker.models import PaymentStatus
from invoice_tracker.services.cache_service import get_cache
from invoice_tracker.services.invoice_store import SqlAlchemyInvoiceStore
from invoice_tracker.services.notification_service import CollectingNotifier
from invoice_tracker.services.reconciliation_engine import ReconciliationEngine
from invoice_tracker.blueprints.metrics import record_registration, record_status_change

reconciliation_bp = Blueprint('reconciliation', __name__, url_prefix='/reconciliation')

STATE_KEY = 'reconciliation_state'


def get_store():
    """Invoice store bound to the request's database session."""
    return SqlAlchemyInvoiceStore(
        get_session(),
        cache=get_cache(),
        default_currency=current_app.config.get('DEFAULT_CURRENCY', 'USD'),
        lines_ttl=current_app.config.get('CACHE_LINES_TTL'),
    )


def load_engine():
    """Engine with this user's saved state merged over fresh data."""
    engine = ReconciliationEngine(get_store(), CollectingNotifier())
    engine.restore_state(session.get(STATE_KEY))
    engine.refresh()
    return engine


def save_engine(engine):
    session[STATE_KEY] = engine.export_state()
    session.modified = True


def engine_response(engine, result=None, status=200, **extra):
    """Save the engine state and render its snapshot with the pending messages."""
    save_engine(engine)
    body = engine.snapshot()
    body['messages'] = engine.notifier.messages
    if result is not None:
        body['ok'] = result.ok
        body['message'] = result.message
        if not result.ok and status == 200:
            status = 422
    body.update(extra)
    return jsonify(body), status


def _payload():
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BusinessLogicError('Expected a JSON object')
    return payload


def _flag(payload, name, default=True):
    value = payload.get(name, default)
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _required(payload, name):
    value = payload.get(name)
    if value in (None, ''):
        raise BusinessLogicError(f'{name} is required')
    return str(value)


@reconciliation_bp.route('/')
def state():
    """Current working set, selection, edit and totals."""
    return engine_response(load_engine())


@reconciliation_bp.route('/select', methods=['POST'])
def select():
    payload = _payload()
    engine = load_engine()
    result = engine.select_line(_required(payload, 'line_id'), _flag(payload, 'checked'))
    return engine_response(engine, result)


@reconciliation_bp.route('/select-all', methods=['POST'])
def select_all():
    payload = _payload()
    engine = load_engine()
    engine.select_all(_flag(payload, 'checked'))
    return engine_response(engine)


@reconciliation_bp.route('/select-booking', methods=['POST'])
def select_booking():
    payload = _payload()
    engine = load_engine()
    touched = engine.select_booking(_required(payload, 'booking_number'), _flag(payload, 'checked'))
    return engine_response(engine, touched=touched)


@reconciliation_bp.route('/edit', methods=['POST'])
def begin_edit():
    payload = _payload()
    engine = load_engine()
    result = engine.begin_edit(_required(payload, 'line_id'), _required(payload, 'field'))
    return engine_response(engine, result)


@reconciliation_bp.route('/edit/buffer', methods=['POST'])
def edit_buffer():
    payload = _payload()
    engine = load_engine()
    engine.set_edit_value(payload.get('value', ''))
    return engine_response(engine)


@reconciliation_bp.route('/edit/commit', methods=['POST'])
def commit_edit():
    payload = _payload()
    engine = load_engine()
    if 'value' in payload:
        engine.set_edit_value(payload['value'])
    return engine_response(engine, engine.commit_edit())


@reconciliation_bp.route('/edit/cancel', methods=['POST'])
def cancel_edit():
    engine = load_engine()
    engine.cancel_edit()
    return engine_response(engine)


@reconciliation_bp.route('/register', methods=['POST'])
def register():
    """
    Register the selected lines' actual amounts.

    On a failed write the selection is kept and 503 is returned with the
    unchanged state.
    """
    payload = _payload()
    engine = load_engine()
    actor = request.headers.get('X-Actor') or current_app.config.get('DEFAULT_ACTOR', 'system')

    try:
        batch = engine.register_selection(
            _flag(payload, 'all_lines_confirmed_paid', default=False),
            created_by=actor,
            supplier_invoice_id=payload.get('supplier_invoice_id') or None,
        )
    except PersistenceError as e:
        current_app.logger.error(f"[REGISTER] Registration failed for {actor}: {e.message}")
        return engine_response(engine, status=e.status_code, ok=False, message=e.message)

    if batch.records:
        record_registration(batch)
        current_app.logger.info(f"[REGISTER] {actor} registered {len(batch.records)} line(s)")
    return engine_response(engine, ok=bool(batch.records), registration=batch.to_dict())


@reconciliation_bp.route('/lines/<line_id>/fully-paid', methods=['POST'])
def fully_paid(line_id):
    """
    Mark one line as paid or unpaid.

    The new status is applied before the write. If the write fails, the
    response still shows it together with an error message, but the next
    request reloads the line from the database and shows the stored status.
    """
    payload = _payload()
    engine = load_engine()
    line = engine.get_line(line_id)
    before = line.payment_status if line else None

    result = engine.toggle_fully_paid(line_id, _flag(payload, 'is_paid'))
    if result.ok and line is not None and line.payment_status is not before:
        record_status_change(line.payment_status)
    return engine_response(engine, result, is_paid=bool(line and line.payment_status is PaymentStatus.PAID))


@reconciliation_bp.route('/reset', methods=['POST'])
def reset():
    engine = load_engine()
    engine.reset_selection()
    return engine_response(engine)
