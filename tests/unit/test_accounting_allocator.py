"""
Unit tests for the accounting split allocator.
"""

import pytest
from decimal import Decimal

from invoice_tracker.exceptions import NotFoundError, ValidationRejection
from invoice_tracker.services.accounting_allocator import AccountingSplitAllocator


class TestAllocatorEntries:
    """Tests for adding and removing entries."""

    def test_seeded_with_full_totals(self):
        allocator = AccountingSplitAllocator('1000', '250', '4010', '2610')

        assert len(allocator.entries) == 1
        entry = allocator.entries[0]
        assert entry.amount == Decimal('1000')
        assert entry.vat_amount == Decimal('250')
        assert entry.account == '4010'
        assert entry.vat_account == '2610'
        assert allocator.remaining_amount == Decimal('0')

    def test_add_entry_is_empty_with_default_vat_account(self):
        allocator = AccountingSplitAllocator('1000', '250', '4010', '2610')

        entry = allocator.add_entry()

        assert entry.amount == Decimal('0')
        assert entry.vat_amount == Decimal('0')
        assert entry.account == ''
        assert entry.vat_account == '2610'
        assert entry.id != allocator.entries[0].id

    def test_last_entry_cannot_be_removed(self):
        allocator = AccountingSplitAllocator('1000', '0')

        assert allocator.remove_entry('1') is False
        assert len(allocator.entries) == 1

    def test_remove_entry(self):
        allocator = AccountingSplitAllocator('1000', '0')
        second = allocator.add_entry()

        assert allocator.remove_entry('1') is True
        assert [entry.id for entry in allocator.entries] == [second.id]

    def test_remove_unknown_entry(self):
        allocator = AccountingSplitAllocator('1000', '0')

        with pytest.raises(NotFoundError):
            allocator.remove_entry('99')


class TestAllocatorClamping:
    """Tests for amount clamping."""

    def test_new_entry_clamped_when_total_used(self):
        allocator = AccountingSplitAllocator('1000', '0')
        second = allocator.add_entry()

        allocator.update_entry_amount(second.id, '1500')

        assert second.amount == Decimal('0')
        assert allocator.amount_valid is True

    def test_split_between_entries(self):
        allocator = AccountingSplitAllocator('1000', '200')
        second = allocator.add_entry()

        allocator.update_entry_amount('1', '600')
        allocator.update_entry_amount(second.id, '1500')
        allocator.update_entry_vat('1', '150')
        allocator.update_entry_vat(second.id, '80')

        assert second.amount == Decimal('400')
        assert second.vat_amount == Decimal('50')
        assert allocator.remaining_amount == Decimal('0')
        assert allocator.is_valid is True

    @pytest.mark.parametrize('raw, expected', [
        ('abc', Decimal('0')),
        ('', Decimal('0')),
        ('-50', Decimal('0')),
        ('250,5', Decimal('250.5')),
    ])
    def test_invalid_and_negative_input(self, raw, expected):
        allocator = AccountingSplitAllocator('1000', '0')

        allocator.update_entry_amount('1', raw)

        assert allocator.entries[0].amount == expected

    def test_sum_never_exceeds_total(self):
        allocator = AccountingSplitAllocator('1000', '100')
        ids = ['1']
        for raw in ['300', '900', '1e3', '250.75', 'x', '400']:
            entry = allocator.add_entry()
            ids.append(entry.id)
            allocator.update_entry_amount(entry.id, raw)
            assert allocator.allocated_amount <= allocator.total_amount
        allocator.remove_entry(ids[2])
        allocator.update_entry_amount('1', '5000')

        assert allocator.allocated_amount <= allocator.total_amount
        assert len(allocator.entries) >= 1


class TestAllocatorResync:
    """Tests for totals changing under the entries."""

    def test_resync_only_touches_first_entry(self):
        allocator = AccountingSplitAllocator('1000', '0', '4010')
        allocator.update_entry_amount('1', '600')
        second = allocator.add_entry()
        allocator.update_entry_amount(second.id, '400')

        allocator.resync(total_amount='800', default_account='6540')

        assert allocator.entries[0].amount == Decimal('800')
        assert allocator.entries[0].account == '6540'
        assert second.amount == Decimal('400')
        assert allocator.amount_valid is False
        assert allocator.remaining_amount == Decimal('-400')

    def test_restore_keeps_entries_when_totals_unchanged(self):
        allocator = AccountingSplitAllocator('1000', '0', '4010')
        allocator.update_entry_account('1', account='5460')
        allocator.update_entry_amount('1', '700')
        allocator.add_entry()
        state = allocator.export_state()

        restored = AccountingSplitAllocator('1000', '0', '4010')
        restored.restore_state(state)

        assert [entry.id for entry in restored.entries] == ['1', '2']
        assert restored.entries[0].amount == Decimal('700')
        assert restored.entries[0].account == '5460'
        assert restored.add_entry().id == '3'

    def test_restore_resyncs_when_totals_changed(self):
        allocator = AccountingSplitAllocator('1000', '0', '4010')
        allocator.update_entry_amount('1', '700')
        state = allocator.export_state()

        restored = AccountingSplitAllocator('1200', '0', '4010')
        restored.restore_state(state)

        assert restored.entries[0].amount == Decimal('1200')


class TestAllocatorAccounts:
    """Tests for account code validation."""

    def test_known_accounts(self):
        allocator = AccountingSplitAllocator('1000', '250')

        entry = allocator.update_entry_account('1', account='6540', vat_account='2640')

        assert entry.account == '6540'
        assert entry.vat_account == '2640'

    def test_empty_account_allowed(self):
        allocator = AccountingSplitAllocator('1000', '250', '4010')

        assert allocator.update_entry_account('1', account='').account == ''

    def test_unknown_cost_account(self):
        allocator = AccountingSplitAllocator('1000', '250')

        with pytest.raises(ValidationRejection):
            allocator.update_entry_account('1', account='2610')

    def test_unknown_vat_account(self):
        allocator = AccountingSplitAllocator('1000', '250')

        with pytest.raises(ValidationRejection):
            allocator.update_entry_account('1', vat_account='4010')
