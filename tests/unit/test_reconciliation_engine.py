"""
Unit tests for the reconciliation engine, run against an in-memory store.
"""

import pytest
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from invoice_tracker.exceptions import PersistenceError
from invoice_tracker.models import PaymentStatus
from invoice_tracker.services.invoice_store import InvoiceStore
from invoice_tracker.services.notification_service import CollectingNotifier, ERROR, SUCCESS
from invoice_tracker.services.reconciliation_engine import ReconciliationEngine
from invoice_tracker.services.records import EnrichedLine, RegistrationRecord


def make_line(line_id, estimated_cost, invoice_id='INV-1', invoice_total='500',
              status=PaymentStatus.UNPAID, actual_cost=None, booking_number='', estimated_vat=None):
    return EnrichedLine(
        id=line_id,
        description=f'Line {line_id}',
        quantity=1,
        unit_price=Decimal(estimated_cost),
        estimated_cost=Decimal(estimated_cost),
        supplier_id='S1',
        supplier_name='Tech Solutions Inc.',
        invoice_id=invoice_id,
        invoice_number=invoice_id,
        invoice_total_amount=Decimal(invoice_total),
        actual_cost=None if actual_cost is None else Decimal(actual_cost),
        estimated_vat=None if estimated_vat is None else Decimal(estimated_vat),
        payment_status=status,
        booking_number=booking_number,
    )


def make_record(line_id, cost, vat='0'):
    return RegistrationRecord(
        id=f'rec-{line_id}-{cost}',
        invoice_line_id=line_id,
        actual_cost=Decimal(cost),
        actual_vat=Decimal(vat),
        currency='USD',
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class FakeStore(InvoiceStore):
    """Keeps lines and records in memory; can be told to fail writes."""

    def __init__(self, lines, records=None):
        self.lines = lines
        self.records = list(records or [])
        self.status_calls = []
        self.fail = False

    def fetch_invoices(self):
        return []

    def fetch_line_repository(self):
        return [replace(line) for line in self.lines]

    def fetch_registration_records(self):
        return list(self.records)

    def insert_registration_records(self, records):
        if self.fail:
            raise PersistenceError('database unavailable')
        self.records.extend(records)

    def update_line_payment_status(self, updates):
        if self.fail:
            raise PersistenceError('database unavailable')
        self.status_calls.append(list(updates))
        by_id = {update.line_id: update.status for update in updates}
        self.lines = [
            replace(line, payment_status=by_id.get(line.id, line.payment_status))
            for line in self.lines
        ]


@pytest.fixture
def store():
    return FakeStore([
        make_line('L1', '100'),
        make_line('L2', '70', booking_number='BK-1'),
        make_line('L3', '50', booking_number='BK-1'),
        make_line('P1', '30', status=PaymentStatus.PAID, booking_number='BK-1'),
        make_line('Q1', '40', invoice_id='INV-2', invoice_total='900', status=PaymentStatus.PARTIAL),
    ])


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def engine(store, notifier):
    engine = ReconciliationEngine(store, notifier)
    engine.refresh()
    return engine


class TestLoadWorkingSet:
    """Tests for registered totals and merging."""

    def test_registered_totals_sum_records_per_line(self, notifier):
        engine = ReconciliationEngine(notifier=notifier)
        engine.load_working_set(
            [make_line('L1', '100'), make_line('L2', '70')],
            [make_record('L1', '30', '5'), make_record('L1', '20', '2.50'), make_record('GONE', '999')],
        )

        l1, l2 = engine.lines
        assert l1.registered_actual_cost == Decimal('50')
        assert l1.registered_actual_vat == Decimal('7.50')
        assert l2.registered_actual_cost == Decimal('0')
        assert l2.registered_actual_vat == Decimal('0')

    def test_reload_keeps_selection_and_typed_values(self, engine, store):
        engine.select_line('L1', True)
        engine.begin_edit('L2', 'vat')
        engine.set_edit_value('12.50')
        engine.commit_edit()

        engine.refresh()

        assert engine.get_line('L1').selected is True
        assert engine.get_line('L1').actual_cost == Decimal('100')
        assert engine.get_line('L2').actual_vat == Decimal('12.50')
        assert engine.selection == {'L1'}

    def test_reload_drops_stale_selection(self, engine, store):
        engine.select_line('L1', True)
        engine.select_line('L2', True)
        store.lines = [line for line in store.lines if line.id != 'L2']

        engine.refresh()

        assert engine.selection == {'L1'}
        assert engine.get_line('L2') is None

    def test_reload_takes_payment_status_from_fresh_data(self, engine, store):
        engine.select_line('L1', True)
        store.lines = [
            replace(line, payment_status=PaymentStatus.PAID) if line.id == 'L1' else line
            for line in store.lines
        ]

        engine.refresh()

        assert engine.get_line('L1').payment_status is PaymentStatus.PAID
        assert 'L1' not in engine.selection
        assert engine.get_line('L1').selected is False


class TestSelection:
    """Tests for selecting lines."""

    def test_select_seeds_actual_cost_from_estimate(self, engine):
        result = engine.select_line('L1', True)

        assert result.ok is True
        line = engine.get_line('L1')
        assert line.selected is True
        assert line.actual_cost == Decimal('100')

    def test_select_keeps_existing_actual_cost(self, store, notifier):
        store.lines = [make_line('L1', '100', actual_cost='80')]
        engine = ReconciliationEngine(store, notifier)
        engine.refresh()

        engine.select_line('L1', True)

        assert engine.get_line('L1').actual_cost == Decimal('80')

    def test_select_seeds_when_actual_cost_is_zero(self, store, notifier):
        store.lines = [make_line('L1', '100', actual_cost='0')]
        engine = ReconciliationEngine(store, notifier)
        engine.refresh()

        engine.select_line('L1', True)

        assert engine.get_line('L1').actual_cost == Decimal('100')

    def test_selecting_paid_line_is_rejected(self, engine, notifier):
        engine.select_line('L1', True)

        result = engine.select_line('P1', True)

        assert result.ok is False
        assert engine.selection == {'L1'}
        assert engine.get_line('P1').selected is False
        assert notifier.messages[-1]['kind'] == ERROR

    def test_unchecking_paid_line_is_noop(self, engine):
        result = engine.select_line('P1', False)

        assert result.ok is True
        assert engine.selection == set()

    def test_partial_lines_are_selectable(self, engine):
        assert engine.select_line('Q1', True).ok is True
        assert 'Q1' in engine.selection

    def test_unknown_line(self, engine):
        result = engine.select_line('nope', True)

        assert result.ok is False
        assert engine.selection == set()

    def test_select_all_selects_only_unpaid_lines(self, engine):
        engine.select_all(True)

        assert engine.selection == {'L1', 'L2', 'L3', 'Q1'}
        assert engine.compute_selection_totals().count == 4
        assert engine.all_selected is True

    def test_select_all_false_clears_everything(self, engine):
        engine.select_all(True)
        engine.select_all(False)

        assert engine.compute_selection_totals().count == 0
        assert engine.all_selected is False
        assert not any(line.selected for line in engine.lines)

    def test_all_selected_is_false_without_selectable_lines(self, notifier):
        engine = ReconciliationEngine(notifier=notifier)
        engine.load_working_set([make_line('P1', '30', status=PaymentStatus.PAID)], [])

        engine.select_all(True)

        assert engine.all_selected is False
        assert engine.selection == set()

    def test_select_booking_skips_paid_lines(self, engine):
        touched = engine.select_booking('BK-1', True)

        assert touched == 2
        assert engine.selection == {'L2', 'L3'}

        engine.select_booking('BK-1', False)
        assert engine.selection == set()

    def test_select_booking_without_number(self, engine):
        engine.select_booking('No Booking', True)

        assert engine.selection == {'L1', 'Q1'}

    def test_reset_clears_selection_and_edit(self, engine):
        engine.select_all(True)
        engine.begin_edit('L1', 'cost')

        engine.reset_selection()

        assert engine.selection == set()
        assert engine.editing_target is None


class TestEditing:
    """Tests for the single in-progress edit."""

    def test_begin_edit_loads_current_value(self, engine):
        engine.select_line('L1', True)

        engine.begin_edit('L1', 'cost')

        assert engine.editing_target.key == 'L1-cost'
        assert engine.pending_edit_value == '100'

    def test_begin_edit_of_empty_value(self, engine):
        engine.begin_edit('L2', 'vat')

        assert engine.pending_edit_value == ''

    def test_begin_edit_replaces_open_edit(self, engine):
        engine.begin_edit('L1', 'cost')
        engine.set_edit_value('5')

        engine.begin_edit('L1', 'vat')

        assert engine.editing_target.key == 'L1-vat'
        assert engine.get_line('L1').actual_cost is None

    def test_begin_edit_rejects_unknown_field(self, engine):
        result = engine.begin_edit('L1', 'estimated_cost')

        assert result.ok is False
        assert engine.editing_target is None

    def test_commit_replaces_value(self, engine):
        engine.select_line('L1', True)
        engine.begin_edit('L1', 'cost')
        engine.set_edit_value('85.50')

        result = engine.commit_edit()

        assert result.ok is True
        assert engine.get_line('L1').actual_cost == Decimal('85.50')
        assert engine.editing_target is None
        assert engine.pending_edit_value == ''

    def test_commit_accepts_comma_decimal(self, engine):
        engine.begin_edit('L1', 'vat')
        engine.set_edit_value('12,5')

        engine.commit_edit()

        assert engine.get_line('L1').actual_vat == Decimal('12.5')

    def test_commit_rounds_to_cents(self, engine, store):
        engine.select_line('L1', True)
        engine.begin_edit('L1', 'cost')
        engine.set_edit_value('10.005')

        engine.commit_edit()
        batch = engine.register_selection(False)

        assert str(batch.records[0].actual_cost) == '10.01'
        assert str(store.records[0].actual_cost) == '10.01'
        assert engine.get_line('L1').registered_actual_cost == Decimal('10.01')

    def test_commit_twice_is_idempotent(self, engine):
        engine.begin_edit('L1', 'cost')
        engine.set_edit_value('42')
        engine.commit_edit()
        first = engine.get_line('L1').actual_cost

        engine.begin_edit('L1', 'cost')
        engine.set_edit_value('42')
        engine.commit_edit()
        engine.commit_edit()

        assert engine.get_line('L1').actual_cost == first == Decimal('42')

    @pytest.mark.parametrize('text', ['abc', '', '1.2.3', '-5'])
    def test_commit_rejects_bad_input(self, engine, notifier, text):
        engine.select_line('L1', True)
        engine.begin_edit('L1', 'cost')
        engine.set_edit_value(text)

        result = engine.commit_edit()

        assert result.ok is False
        assert engine.get_line('L1').actual_cost == Decimal('100')
        assert engine.editing_target.key == 'L1-cost'
        assert notifier.messages[-1]['kind'] == ERROR

    def test_commit_without_edit(self, engine):
        assert engine.commit_edit().ok is False

    def test_cancel_edit(self, engine):
        engine.begin_edit('L1', 'cost')
        engine.set_edit_value('99')

        engine.cancel_edit()

        assert engine.editing_target is None
        assert engine.get_line('L1').actual_cost is None


class TestSelectionTotals:
    """Tests for totals over the selection."""

    def test_totals_after_seeding(self, engine):
        engine.select_line('L1', True)

        totals = engine.compute_selection_totals()

        assert totals.count == 1
        assert totals.total_estimated_cost == Decimal('100')
        assert totals.total_actual_cost == Decimal('100')

    def test_invoice_total_counted_once(self, notifier):
        engine = ReconciliationEngine(notifier=notifier)
        engine.load_working_set(
            [make_line('L1', '50', invoice_id='INV-1', invoice_total='500'),
             make_line('L2', '70', invoice_id='INV-1', invoice_total='500')],
            [],
        )
        engine.select_all(True)

        totals = engine.compute_selection_totals()

        assert totals.total_estimated_cost == Decimal('120')
        assert totals.total_invoiced_amount == Decimal('500')

    def test_invoices_are_added_across_selection(self, engine):
        engine.select_line('L1', True)
        engine.select_line('Q1', True)

        totals = engine.compute_selection_totals()

        assert totals.total_invoiced_amount == Decimal('1400')

    def test_vat_and_difference(self, notifier):
        engine = ReconciliationEngine(notifier=notifier)
        engine.load_working_set([make_line('L1', '100', invoice_total='125', estimated_vat='25')], [])
        engine.select_line('L1', True)
        engine.begin_edit('L1', 'vat')
        engine.set_edit_value('20')
        engine.commit_edit()

        totals = engine.compute_selection_totals()

        assert totals.total_estimated_vat == Decimal('25')
        assert totals.total_actual_vat == Decimal('20')
        assert totals.estimated_total == Decimal('125')
        assert totals.actual_total == Decimal('120')
        assert totals.difference == Decimal('5')


class TestRegisterSelection:
    """Tests for turning the selection into registration records."""

    def test_register_and_mark_paid(self, engine, store, notifier):
        engine.select_line('L1', True)

        batch = engine.register_selection(True, created_by='anna')

        assert len(batch.records) == 1
        record = batch.records[0]
        assert record.invoice_line_id == 'L1'
        assert record.actual_cost == Decimal('100')
        assert record.actual_vat == Decimal('0')
        assert record.created_by == 'anna'
        assert engine.get_line('L1').payment_status is PaymentStatus.PAID
        assert engine.get_line('L1').registered_actual_cost == Decimal('100')
        assert engine.selection == set()
        assert store.records == batch.records
        assert [u.line_id for u in store.status_calls[0]] == ['L1']
        assert notifier.messages[-1]['kind'] == SUCCESS

    def test_register_without_marking_paid(self, engine, store):
        engine.select_line('L2', True)
        engine.select_line('Q1', True)

        batch = engine.register_selection(False)

        assert len(batch.records) == 2
        assert batch.status_updates == []
        assert store.status_calls == []
        assert engine.get_line('Q1').payment_status is PaymentStatus.PARTIAL
        assert engine.selection == set()

    def test_register_closes_open_edit(self, engine):
        engine.select_line('L1', True)
        engine.begin_edit('L3', 'cost')

        engine.register_selection(False)

        assert engine.editing_target is None

    def test_registered_values_survive_reload(self, engine):
        engine.select_line('L1', True)
        engine.register_selection(False)

        engine.refresh()

        line = engine.get_line('L1')
        assert line.registered_actual_cost == Decimal('100')
        assert line.actual_cost is None

    def test_register_empty_selection(self, engine, store, notifier):
        batch = engine.register_selection(True)

        assert batch.records == []
        assert store.records == []
        assert notifier.messages[-1]['kind'] == ERROR

    def test_failed_write_keeps_state(self, engine, store, notifier):
        engine.select_line('L1', True)
        engine.select_line('L2', True)
        store.fail = True

        with pytest.raises(PersistenceError):
            engine.register_selection(True)

        assert engine.selection == {'L1', 'L2'}
        assert engine.get_line('L1').payment_status is PaymentStatus.UNPAID
        assert engine.get_line('L1').registered_actual_cost == Decimal('0')
        assert engine.get_line('L1').actual_cost == Decimal('100')
        assert store.records == []
        assert notifier.messages[-1]['kind'] == ERROR


class TestToggleFullyPaid:
    """Tests for the single-line paid switch."""

    def test_mark_paid_evicts_from_selection(self, engine, store):
        engine.select_line('L1', True)

        result = engine.toggle_fully_paid('L1', True)

        assert result.ok is True
        assert engine.get_line('L1').payment_status is PaymentStatus.PAID
        assert 'L1' not in engine.selection
        assert engine.select_line('L1', True).ok is False
        assert store.status_calls[0][0].status is PaymentStatus.PAID

    def test_repeating_is_noop(self, engine, store):
        engine.toggle_fully_paid('L1', True)
        engine.toggle_fully_paid('L1', True)

        assert len(store.status_calls) == 1

    def test_paid_back_to_unpaid(self, engine, store):
        result = engine.toggle_fully_paid('P1', False)

        assert result.ok is True
        assert engine.get_line('P1').payment_status is PaymentStatus.UNPAID
        assert engine.select_line('P1', True).ok is True

    def test_partial_to_unpaid_is_rejected(self, engine, store):
        result = engine.toggle_fully_paid('Q1', False)

        assert result.ok is False
        assert engine.get_line('Q1').payment_status is PaymentStatus.PARTIAL
        assert store.status_calls == []

    def test_failed_write_keeps_local_status(self, engine, store, notifier):
        store.fail = True

        result = engine.toggle_fully_paid('L1', True)

        assert result.ok is False
        assert engine.get_line('L1').payment_status is PaymentStatus.PAID
        assert notifier.messages[-1]['kind'] == ERROR


class TestSessionState:
    """Tests for export/restore between requests."""

    def test_round_trip(self, engine, store, notifier):
        engine.select_line('L1', True)
        engine.begin_edit('L1', 'cost')
        engine.set_edit_value('77')
        engine.commit_edit()
        engine.begin_edit('L2', 'vat')
        engine.set_edit_value('3')
        state = engine.export_state()

        restored = ReconciliationEngine(store, notifier)
        restored.restore_state(state)
        restored.refresh()

        assert restored.selection == {'L1'}
        assert restored.get_line('L1').actual_cost == Decimal('77')
        assert restored.editing_target.key == 'L2-vat'
        assert restored.pending_edit_value == '3'

    def test_restore_nothing(self, store, notifier):
        engine = ReconciliationEngine(store, notifier)
        engine.restore_state(None)
        engine.refresh()

        assert engine.selection == set()

    def test_snapshot(self, engine):
        engine.select_line('L1', True)

        snapshot = engine.snapshot()

        assert set(snapshot) == {'lines', 'selection', 'editing_target', 'edit_buffer', 'all_selected', 'totals'}
        assert snapshot['selection'] == ['L1']
        assert snapshot['totals']['count'] == 1
        assert snapshot['totals']['total_actual_cost'] == '100'
