"""Accounting split blueprint: distribute an invoice total over cost/VAT accounts."""
from flask import Blueprint, request, session, jsonify
from invoice_tracker.database import get_session
from invoice_tracker.exceptions import BusinessLogicError
from invoice_tracker.services.accounting_allocator import AccountingSplitAllocator, COST_ACCOUNTS, VAT_ACCOUNTS
from invoice_tracker.services.invoice_service import get_invoice

accounting_bp = Blueprint('accounting', __name__, url_prefix='/invoices/<invoice_id>/accounting')


def _state_key(invoice_id):
    return f'accounting:{invoice_id}'


def load_allocator(invoice_id):
    """Allocator seeded from the invoice, with this user's entries restored."""
    invoice = get_invoice(invoice_id, get_session())
    allocator = AccountingSplitAllocator(
        invoice.total_amount,
        invoice.total_vat,
        default_account=invoice.account or '',
        default_vat_account=invoice.vat_account or '',
    )
    allocator.restore_state(session.get(_state_key(invoice_id)))
    return allocator


def allocator_response(invoice_id, allocator, status=200, **extra):
    session[_state_key(invoice_id)] = allocator.export_state()
    session.modified = True
    body = allocator.to_dict()
    body['invoice_id'] = invoice_id
    body.update(extra)
    return jsonify(body), status


@accounting_bp.route('/')
def view(invoice_id):
    allocator = load_allocator(invoice_id)
    return allocator_response(invoice_id, allocator, cost_accounts=COST_ACCOUNTS, vat_accounts=VAT_ACCOUNTS)


@accounting_bp.route('/entries', methods=['POST'])
def add_entry(invoice_id):
    allocator = load_allocator(invoice_id)
    entry = allocator.add_entry()
    return allocator_response(invoice_id, allocator, status=201, entry=entry.to_dict())


@accounting_bp.route('/entries/<entry_id>', methods=['DELETE'])
def remove_entry(invoice_id, entry_id):
    allocator = load_allocator(invoice_id)
    if not allocator.remove_entry(entry_id):
        return allocator_response(
            invoice_id, allocator, status=422,
            message='At least one accounting entry is required'
        )
    return allocator_response(invoice_id, allocator)


@accounting_bp.route('/entries/<entry_id>', methods=['PATCH'])
def update_entry(invoice_id, entry_id):
    """Update amount, VAT amount and/or accounts of one entry (amounts are clamped)."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise BusinessLogicError('Expected a JSON object')

    allocator = load_allocator(invoice_id)
    allocator.get_entry(entry_id)
    if 'account' in payload or 'vat_account' in payload:
        allocator.update_entry_account(
            entry_id,
            account=payload.get('account'),
            vat_account=payload.get('vat_account'),
        )
    if 'amount' in payload:
        allocator.update_entry_amount(entry_id, payload['amount'])
    if 'vat_amount' in payload:
        allocator.update_entry_vat(entry_id, payload['vat_amount'])
    return allocator_response(invoice_id, allocator, entry=allocator.get_entry(entry_id).to_dict())
