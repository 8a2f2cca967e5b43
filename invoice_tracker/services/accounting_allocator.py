"""
Accounting split allocator.

Splits an invoice total (amount and VAT) across cost/VAT account pairs.
Edits are clamped so the entries never allocate more than the invoice total.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from invoice_tracker.exceptions import NotFoundError, ValidationRejection
from invoice_tracker.utils.number_format import parse_decimal_or_zero

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

COST_ACCOUNTS = {
    '4010': 'Purchase of goods',
    '4020': 'Domestic purchase of goods',
    '4050': 'Purchase of goods from EU',
    '4531': 'Purchase of services outside EU',
    '5460': 'Consumables / Supplies',
    '6110': 'Office supplies',
    '6540': 'IT services',
}

VAT_ACCOUNTS = {
    '2610': 'Input VAT 25%',
    '2611': 'Input VAT 12%',
    '2612': 'Input VAT 6%',
    '2615': 'Input VAT 0%',
    '2620': 'VAT on imports',
    '2640': 'Deductible VAT',
}


@dataclass
class AccountingEntry:
    id: str
    account: str = ''
    vat_account: str = ''
    amount: Decimal = ZERO
    vat_amount: Decimal = ZERO

    def to_dict(self) -> Dict[str, str]:
        return {
            'id': self.id,
            'account': self.account,
            'vat_account': self.vat_account,
            'amount': str(self.amount),
            'vat_amount': str(self.vat_amount),
        }


def _validate_account(code: str, chart: Dict[str, str], kind: str) -> str:
    code = (code or '').strip()
    if code and code not in chart:
        raise ValidationRejection(f'Unknown {kind} account {code}')
    return code


class AccountingSplitAllocator:
    """
    Ordered accounting entries for one invoice.

    Always holds at least one entry. The first entry follows the invoice
    totals and default accounts (see `resync`); later entries are user-owned.
    """

    def __init__(self, total_amount, total_vat,
                 default_account: str = '', default_vat_account: str = ''):
        self.total_amount = Decimal(total_amount or 0)
        self.total_vat = Decimal(total_vat or 0)
        self.default_account = default_account or ''
        self.default_vat_account = default_vat_account or ''
        self._next_id = 2
        self.entries: List[AccountingEntry] = [
            AccountingEntry(
                id='1',
                account=self.default_account,
                vat_account=self.default_vat_account,
                amount=self.total_amount,
                vat_amount=self.total_vat,
            )
        ]

    def get_entry(self, entry_id: str) -> AccountingEntry:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        raise NotFoundError(f'Accounting entry {entry_id} not found')

    def add_entry(self) -> AccountingEntry:
        entry = AccountingEntry(id=str(self._next_id), vat_account=self.default_vat_account)
        self._next_id += 1
        self.entries.append(entry)
        return entry

    def remove_entry(self, entry_id: str) -> bool:
        """Remove an entry. The last remaining entry is kept; returns False then."""
        entry = self.get_entry(entry_id)
        if len(self.entries) <= 1:
            logger.debug("Refusing to remove the last accounting entry")
            return False
        self.entries.remove(entry)
        return True

    def _clamp(self, value: Decimal, total: Decimal, others: Decimal) -> Decimal:
        upper = max(ZERO, total - others)
        return min(max(ZERO, value), upper)

    def update_entry_amount(self, entry_id: str, raw_value) -> AccountingEntry:
        """Set an entry's amount; invalid input counts as 0, result is clamped."""
        entry = self.get_entry(entry_id)
        others = sum((e.amount for e in self.entries if e is not entry), ZERO)
        entry.amount = self._clamp(parse_decimal_or_zero(raw_value), self.total_amount, others)
        return entry

    def update_entry_vat(self, entry_id: str, raw_value) -> AccountingEntry:
        """Same as update_entry_amount, against the invoice VAT."""
        entry = self.get_entry(entry_id)
        others = sum((e.vat_amount for e in self.entries if e is not entry), ZERO)
        entry.vat_amount = self._clamp(parse_decimal_or_zero(raw_value), self.total_vat, others)
        return entry

    def update_entry_account(self, entry_id: str,
                             account: Optional[str] = None,
                             vat_account: Optional[str] = None) -> AccountingEntry:
        entry = self.get_entry(entry_id)
        if account is not None:
            entry.account = _validate_account(account, COST_ACCOUNTS, 'cost')
        if vat_account is not None:
            entry.vat_account = _validate_account(vat_account, VAT_ACCOUNTS, 'VAT')
        return entry

    def resync(self, total_amount=None, total_vat=None,
               default_account: Optional[str] = None,
               default_vat_account: Optional[str] = None) -> None:
        """
        Apply changed invoice totals or defaults.

        Only the first entry is rewritten. Other entries keep their values,
        so the allocation can end up invalid; that is reported through
        `is_valid`, never corrected here.
        """
        if total_amount is not None:
            self.total_amount = Decimal(total_amount)
        if total_vat is not None:
            self.total_vat = Decimal(total_vat)
        if default_account is not None:
            self.default_account = default_account
        if default_vat_account is not None:
            self.default_vat_account = default_vat_account

        first = self.entries[0]
        first.account = self.default_account
        first.vat_account = self.default_vat_account
        first.amount = self.total_amount
        first.vat_amount = self.total_vat

    @property
    def allocated_amount(self) -> Decimal:
        return sum((e.amount for e in self.entries), ZERO)

    @property
    def allocated_vat(self) -> Decimal:
        return sum((e.vat_amount for e in self.entries), ZERO)

    @property
    def remaining_amount(self) -> Decimal:
        return self.total_amount - self.allocated_amount

    @property
    def remaining_vat(self) -> Decimal:
        return self.total_vat - self.allocated_vat

    @property
    def amount_valid(self) -> bool:
        return self.allocated_amount <= self.total_amount

    @property
    def vat_valid(self) -> bool:
        return self.allocated_vat <= self.total_vat

    @property
    def is_valid(self) -> bool:
        return self.amount_valid and self.vat_valid

    def to_dict(self) -> dict:
        return {
            'total_amount': str(self.total_amount),
            'total_vat': str(self.total_vat),
            'default_account': self.default_account,
            'default_vat_account': self.default_vat_account,
            'entries': [entry.to_dict() for entry in self.entries],
            'allocated_amount': str(self.allocated_amount),
            'allocated_vat': str(self.allocated_vat),
            'remaining_amount': str(self.remaining_amount),
            'remaining_vat': str(self.remaining_vat),
            'amount_valid': self.amount_valid,
            'vat_valid': self.vat_valid,
            'is_valid': self.is_valid,
        }

    def export_state(self) -> dict:
        return {
            'next_id': self._next_id,
            'totals': [str(self.total_amount), str(self.total_vat),
                       self.default_account, self.default_vat_account],
            'entries': [entry.to_dict() for entry in self.entries],
        }

    def restore_state(self, state: Optional[dict]) -> None:
        """
        Restore entries saved by export_state.

        When the invoice totals or default accounts changed since the state
        was saved, the first entry is resynced to the current ones.
        """
        if not state or not state.get('entries'):
            return
        current = [str(self.total_amount), str(self.total_vat),
                   self.default_account, self.default_vat_account]
        self.entries = [
            AccountingEntry(
                id=str(item['id']),
                account=item.get('account') or '',
                vat_account=item.get('vat_account') or '',
                amount=Decimal(item.get('amount') or 0),
                vat_amount=Decimal(item.get('vat_amount') or 0),
            )
            for item in state['entries']
        ]
        self._next_id = int(state.get('next_id') or len(self.entries) + 1)
        if state.get('totals') != current:
            self.resync()
