"""
Reconciliation engine for invoice lines.

Holds the working set of enriched lines for one user session, the selection
of lines picked for registration, the single in-progress edit, and turns a
selection into registration records.

Lines and registration records come from an `InvoiceStore`; user-facing
messages go to a `Notifier`. The engine never reads ambient storage itself:
the HTTP layer persists `export_state()` between requests and hands it back
through `restore_state()`.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from invoice_tracker.exceptions import InvalidStatusTransition, PersistenceError
from invoice_tracker.models import PaymentStatus
from invoice_tracker.services import payment_status
from invoice_tracker.services.line_aggregator import NO_BOOKING_LABEL
from invoice_tracker.services.notification_service import Notifier
from invoice_tracker.services.records import (
    EditTarget, EnrichedLine, OperationResult, RegistrationBatch,
    RegistrationRecord, SelectionTotals, StatusUpdate,
)
from invoice_tracker.utils.number_format import parse_decimal, to_cents

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

COST_FIELD = 'cost'
VAT_FIELD = 'vat'
EDITABLE_FIELDS = {COST_FIELD: 'actual_cost', VAT_FIELD: 'actual_vat'}


class ReconciliationEngine:
    """Selection, editing and registration over a working set of lines."""

    def __init__(self, store=None, notifier: Optional[Notifier] = None):
        self.store = store
        self.notifier = notifier or Notifier()
        self.lines: List[EnrichedLine] = []
        self.selection: set = set()
        self.editing_target: Optional[EditTarget] = None
        self.pending_edit_value: str = ''
        # Values typed by the user (or seeded on selection) and not yet registered
        self._local_values: Dict[str, Dict[str, Decimal]] = {}

    # ------------------------------------------------------------------
    # Working set
    # ------------------------------------------------------------------

    def get_line(self, line_id: str) -> Optional[EnrichedLine]:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None

    def load_working_set(self, fresh_lines: Iterable[EnrichedLine], registration_records: Iterable) -> None:
        """
        Replace the working set with fresh lines, keeping local state.

        Registered totals are recomputed from `registration_records`; records
        pointing at lines outside the set are ignored. Selection and unsaved
        local values survive for lines that are still present. Payment status
        and every other stored field always come from the fresh data.
        """
        fresh_lines = list(fresh_lines)
        registered_cost: Dict[str, Decimal] = {}
        registered_vat: Dict[str, Decimal] = {}
        for record in registration_records:
            registered_cost[record.invoice_line_id] = registered_cost.get(record.invoice_line_id, ZERO) + (record.actual_cost or ZERO)
            registered_vat[record.invoice_line_id] = registered_vat.get(record.invoice_line_id, ZERO) + (record.actual_vat or ZERO)

        fresh_ids = {line.id for line in fresh_lines}
        paid_ids = {line.id for line in fresh_lines if line.is_paid}

        self._local_values = {
            line_id: values for line_id, values in self._local_values.items()
            if line_id in fresh_ids
        }
        stale = self.selection - fresh_ids
        if stale:
            logger.debug(f"Dropping {len(stale)} stale selection(s)")
        self.selection = (self.selection & fresh_ids) - paid_ids

        for line in fresh_lines:
            line.registered_actual_cost = registered_cost.get(line.id, ZERO)
            line.registered_actual_vat = registered_vat.get(line.id, ZERO)
            for attr, value in self._local_values.get(line.id, {}).items():
                setattr(line, attr, value)
            line.selected = line.id in self.selection

        if self.editing_target and self.editing_target.line_id not in fresh_ids:
            self._clear_edit()

        self.lines = fresh_lines

    def refresh(self) -> None:
        """Reload lines and registration records from the store."""
        self.load_working_set(
            self.store.fetch_line_repository(),
            self.store.fetch_registration_records(),
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _set_local(self, line: EnrichedLine, attr: str, value: Decimal) -> None:
        setattr(line, attr, value)
        self._local_values.setdefault(line.id, {})[attr] = value

    def _check(self, line: EnrichedLine) -> None:
        if not line.actual_cost:
            # Convenience default; stays editable
            self._set_local(line, 'actual_cost', line.estimated_cost)
        line.selected = True
        self.selection.add(line.id)

    def _uncheck(self, line: EnrichedLine) -> None:
        line.selected = False
        self.selection.discard(line.id)

    def select_line(self, line_id: str, checked: bool) -> OperationResult:
        """Check or uncheck one line. Paid lines cannot be checked."""
        line = self.get_line(line_id)
        if line is None:
            message = f'Invoice line {line_id} not found'
            self.notifier.error(message)
            return OperationResult(False, message)

        if checked:
            if not payment_status.is_selectable(line.payment_status):
                message = 'Cannot select a line that is already paid'
                logger.warning(f"Rejected selection of paid line {line_id}")
                self.notifier.error(message)
                return OperationResult(False, message)
            self._check(line)
        else:
            self._uncheck(line)
        return OperationResult(True)

    def select_all(self, checked: bool) -> None:
        """Check every non-paid line, or clear the whole selection."""
        if checked:
            for line in self.lines:
                if payment_status.is_selectable(line.payment_status):
                    self._check(line)
        else:
            for line in self.lines:
                line.selected = False
            self.selection.clear()

    def select_booking(self, booking_number: str, checked: bool) -> int:
        """Check or uncheck every non-paid line of one booking; returns lines touched."""
        touched = 0
        for line in self.lines:
            if (line.booking_number or NO_BOOKING_LABEL) != booking_number:
                continue
            if not payment_status.is_selectable(line.payment_status):
                continue
            if checked:
                self._check(line)
            else:
                self._uncheck(line)
            touched += 1
        return touched

    def reset_selection(self) -> None:
        self.select_all(False)
        self._clear_edit()

    @property
    def all_selected(self) -> bool:
        selectable = [line for line in self.lines if payment_status.is_selectable(line.payment_status)]
        return bool(selectable) and all(line.id in self.selection for line in selectable)

    def selected_lines(self) -> List[EnrichedLine]:
        return [line for line in self.lines if line.id in self.selection]

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def begin_edit(self, line_id: str, field: str) -> OperationResult:
        """Start editing one field of one line; replaces any edit in progress."""
        if field not in EDITABLE_FIELDS:
            return OperationResult(False, f'Unknown field {field}')
        line = self.get_line(line_id)
        if line is None:
            return OperationResult(False, f'Invoice line {line_id} not found')

        current = getattr(line, EDITABLE_FIELDS[field])
        self.editing_target = EditTarget(line_id, field)
        self.pending_edit_value = '' if current is None else str(current)
        return OperationResult(True)

    def set_edit_value(self, text: str) -> None:
        self.pending_edit_value = '' if text is None else str(text)

    def _clear_edit(self) -> None:
        self.editing_target = None
        self.pending_edit_value = ''

    def cancel_edit(self) -> None:
        self._clear_edit()

    def commit_edit(self) -> OperationResult:
        """
        Store the buffered text in the edited field.

        The value is rounded to cents and replaces the previous one.
        Unparsable or negative input is rejected without touching the line
        and leaves the edit open.
        """
        target = self.editing_target
        if target is None:
            return OperationResult(False, 'No edit in progress')

        line = self.get_line(target.line_id)
        if line is None:
            self._clear_edit()
            return OperationResult(False, f'Invoice line {target.line_id} not found')

        try:
            value = to_cents(parse_decimal(self.pending_edit_value))
        except ValueError as e:
            message = f'Invalid amount "{self.pending_edit_value}": {e}'
            logger.warning(f"Rejected edit of {target.key}: {e}")
            self.notifier.error(message)
            return OperationResult(False, message)

        self._set_local(line, EDITABLE_FIELDS[target.field], value)
        self._clear_edit()
        return OperationResult(True)

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def compute_selection_totals(self) -> SelectionTotals:
        """
        Totals over the selected lines.

        Each parent invoice's total amount is counted once, however many of
        its lines are selected. Currencies are not converted.
        """
        totals = SelectionTotals()
        invoiced: Dict[str, Decimal] = {}
        for line in self.selected_lines():
            totals.count += 1
            totals.total_estimated_cost += line.estimated_cost
            totals.total_estimated_vat += line.estimated_vat or ZERO
            totals.total_actual_cost += line.actual_cost or ZERO
            totals.total_actual_vat += line.actual_vat or ZERO
            if line.invoice_id:
                invoiced[line.invoice_id] = line.invoice_total_amount or ZERO
        totals.total_invoiced_amount = sum(invoiced.values(), ZERO)
        return totals

    # ------------------------------------------------------------------
    # Registration and payment status
    # ------------------------------------------------------------------

    def _build_record(self, line: EnrichedLine, created_by, created_at, supplier_invoice_id) -> RegistrationRecord:
        return RegistrationRecord(
            id=str(uuid.uuid4()),
            invoice_line_id=line.id,
            actual_cost=to_cents(line.actual_cost or 0),
            actual_vat=to_cents(line.actual_vat or 0),
            currency=line.currency,
            created_at=created_at,
            description=line.description,
            supplier_name=line.supplier_name,
            created_by=created_by,
            supplier_invoice_id=supplier_invoice_id,
        )

    def register_selection(self,
                           all_lines_confirmed_paid: bool,
                           created_by: Optional[str] = None,
                           supplier_invoice_id: Optional[str] = None) -> RegistrationBatch:
        """
        Emit one registration record per selected line and persist the batch.

        With `all_lines_confirmed_paid` every selected line also moves to paid.
        Nothing in memory changes until the store accepts the whole batch; on
        failure the selection and statuses are left as they were, the user is
        notified and PersistenceError propagates.
        """
        selected = self.selected_lines()
        if not selected:
            self.notifier.error('No lines selected')
            return RegistrationBatch()

        created_at = datetime.now(timezone.utc)
        records = [self._build_record(line, created_by, created_at, supplier_invoice_id) for line in selected]

        status_updates: List[StatusUpdate] = []
        if all_lines_confirmed_paid:
            for line in selected:
                update = payment_status.transition(line.id, line.payment_status, PaymentStatus.PAID)
                if update is not None:
                    status_updates.append(update)

        try:
            self.store.register(records, status_updates)
        except PersistenceError as e:
            logger.error(f"Registration of {len(records)} line(s) failed: {e.message}")
            self.notifier.error(f'Failed to register costs: {e.message}')
            raise

        by_id = {line.id: line for line in selected}
        for record in records:
            line = by_id[record.invoice_line_id]
            line.registered_actual_cost += record.actual_cost
            line.registered_actual_vat += record.actual_vat
            self._local_values.pop(line.id, None)
        for update in status_updates:
            by_id[update.line_id].payment_status = update.status

        self.select_all(False)
        self._clear_edit()

        logger.info(f"Registered {len(records)} line(s), {len(status_updates)} marked paid")
        self.notifier.success(f'Registered costs for {len(records)} line(s)')
        return RegistrationBatch(records=records, status_updates=status_updates)

    def toggle_fully_paid(self, line_id: str, is_paid: bool) -> OperationResult:
        """
        Flip one line between paid and unpaid.

        The local status changes first and is kept even when the store write
        fails; the failure is only reported. Unlike register_selection there
        is no rollback here.
        """
        line = self.get_line(line_id)
        if line is None:
            message = f'Invoice line {line_id} not found'
            self.notifier.error(message)
            return OperationResult(False, message)

        target = payment_status.fully_paid_target(is_paid)
        try:
            update = payment_status.transition(line.id, line.payment_status, target)
        except InvalidStatusTransition as e:
            self.notifier.error(e.message)
            return OperationResult(False, e.message)

        if update is None:
            return OperationResult(True)

        line.payment_status = update.status
        if update.status is PaymentStatus.PAID:
            self._uncheck(line)

        try:
            self.store.update_line_payment_status([update])
        except PersistenceError as e:
            logger.error(f"Payment status update for line {line_id} failed: {e.message}")
            message = f'Failed to update payment status: {e.message}'
            self.notifier.error(message)
            return OperationResult(False, message)

        label = 'paid' if update.status is PaymentStatus.PAID else 'unpaid'
        self.notifier.success(f'Line marked as {label}')
        return OperationResult(True)

    # ------------------------------------------------------------------
    # Session state and rendering
    # ------------------------------------------------------------------

    def export_state(self) -> dict:
        """JSON-safe state to keep between requests."""
        return {
            'selection': sorted(self.selection),
            'local_values': {
                line_id: {attr: str(value) for attr, value in values.items()}
                for line_id, values in self._local_values.items()
            },
            'editing': [self.editing_target.line_id, self.editing_target.field] if self.editing_target else None,
            'edit_buffer': self.pending_edit_value,
        }

    def restore_state(self, state: Optional[dict]) -> None:
        """Load state saved by export_state; takes effect on the next load_working_set."""
        if not state:
            return
        self.selection = set(state.get('selection') or [])
        self._local_values = {
            line_id: {
                attr: Decimal(value) for attr, value in values.items()
                if attr in EDITABLE_FIELDS.values()
            }
            for line_id, values in (state.get('local_values') or {}).items()
        }
        editing = state.get('editing')
        if editing and len(editing) == 2 and editing[1] in EDITABLE_FIELDS:
            self.editing_target = EditTarget(editing[0], editing[1])
            self.pending_edit_value = state.get('edit_buffer') or ''
        else:
            self._clear_edit()

    def snapshot(self) -> dict:
        """Everything the rendering layer needs."""
        return {
            'lines': [line.to_dict() for line in self.lines],
            'selection': sorted(self.selection),
            'editing_target': self.editing_target.key if self.editing_target else None,
            'edit_buffer': self.pending_edit_value,
            'all_selected': self.all_selected,
            'totals': self.compute_selection_totals().to_dict(),
        }
