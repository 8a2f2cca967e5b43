"""Plain records exchanged between the aggregator, the engine and the store."""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from invoice_tracker.models import PaymentStatus, InvoiceType


def _dec(value) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _str(value) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class EnrichedLine:
    """An invoice line with its invoice context attached."""

    id: str
    description: str
    quantity: int
    unit_price: Decimal
    estimated_cost: Decimal
    supplier_id: str
    supplier_name: str
    supplier_part_number: str = ''
    invoice_id: str = ''
    invoice_number: str = ''
    invoice_total_amount: Decimal = Decimal('0')
    actual_cost: Optional[Decimal] = None
    estimated_vat: Optional[Decimal] = None
    actual_vat: Optional[Decimal] = None
    currency: str = 'USD'
    booking_number: str = ''
    confirmation_number: str = ''
    departure_date: str = ''
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    fully_invoiced: bool = False
    invoice_type: InvoiceType = InvoiceType.SINGLE
    supplier_account_number: str = ''
    supplier_default_currency: str = ''
    supplier_currency_rate: Optional[Decimal] = None
    registered_actual_cost: Decimal = Decimal('0')
    registered_actual_vat: Decimal = Decimal('0')
    selected: bool = False

    @property
    def is_paid(self) -> bool:
        return self.payment_status is PaymentStatus.PAID

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation (Decimals as strings)."""
        from invoice_tracker.services.line_aggregator import display_booking_number

        return {
            'id': self.id,
            'description': self.description,
            'quantity': self.quantity,
            'unit_price': _str(self.unit_price),
            'estimated_cost': _str(self.estimated_cost),
            'supplier_id': self.supplier_id,
            'supplier_name': self.supplier_name,
            'supplier_part_number': self.supplier_part_number,
            'invoice_id': self.invoice_id,
            'invoice_number': self.invoice_number,
            'invoice_total_amount': _str(self.invoice_total_amount),
            'actual_cost': _str(self.actual_cost),
            'estimated_vat': _str(self.estimated_vat),
            'actual_vat': _str(self.actual_vat),
            'currency': self.currency,
            'booking_number': self.booking_number,
            'display_booking_number': display_booking_number(self),
            'confirmation_number': self.confirmation_number,
            'departure_date': self.departure_date,
            'payment_status': self.payment_status.value,
            'fully_invoiced': self.fully_invoiced,
            'invoice_type': self.invoice_type.value,
            'supplier_account_number': self.supplier_account_number,
            'supplier_default_currency': self.supplier_default_currency,
            'supplier_currency_rate': _str(self.supplier_currency_rate),
            'registered_actual_cost': _str(self.registered_actual_cost),
            'registered_actual_vat': _str(self.registered_actual_vat),
            'selected': self.selected,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnrichedLine':
        """Inverse of to_dict (used when reading the line repository from cache)."""
        return cls(
            id=data['id'],
            description=data.get('description') or '',
            quantity=int(data.get('quantity') or 1),
            unit_price=_dec(data.get('unit_price')) or Decimal('0'),
            estimated_cost=_dec(data.get('estimated_cost')) or Decimal('0'),
            supplier_id=data.get('supplier_id') or '',
            supplier_name=data.get('supplier_name') or '',
            supplier_part_number=data.get('supplier_part_number') or '',
            invoice_id=data.get('invoice_id') or '',
            invoice_number=data.get('invoice_number') or '',
            invoice_total_amount=_dec(data.get('invoice_total_amount')) or Decimal('0'),
            actual_cost=_dec(data.get('actual_cost')),
            estimated_vat=_dec(data.get('estimated_vat')),
            actual_vat=_dec(data.get('actual_vat')),
            currency=data.get('currency') or 'USD',
            booking_number=data.get('booking_number') or '',
            confirmation_number=data.get('confirmation_number') or '',
            departure_date=data.get('departure_date') or '',
            payment_status=PaymentStatus.parse(data.get('payment_status')),
            fully_invoiced=bool(data.get('fully_invoiced')),
            invoice_type=InvoiceType(data.get('invoice_type') or InvoiceType.SINGLE.value),
            supplier_account_number=data.get('supplier_account_number') or '',
            supplier_default_currency=data.get('supplier_default_currency') or '',
            supplier_currency_rate=_dec(data.get('supplier_currency_rate')),
        )


@dataclass(frozen=True)
class RegistrationRecord:
    """Immutable record of an actual cost/VAT registered against a line."""

    id: str
    invoice_line_id: str
    actual_cost: Decimal
    actual_vat: Decimal
    currency: str
    created_at: datetime
    description: str = ''
    supplier_name: str = ''
    created_by: Optional[str] = None
    supplier_invoice_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'invoice_line_id': self.invoice_line_id,
            'actual_cost': str(self.actual_cost),
            'actual_vat': str(self.actual_vat),
            'currency': self.currency,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'created_by': self.created_by,
            'description': self.description,
            'supplier_name': self.supplier_name,
            'supplier_invoice_id': self.supplier_invoice_id,
        }


@dataclass(frozen=True)
class StatusUpdate:
    """A (line, new status) pair handed to the persistence store."""

    line_id: str
    status: PaymentStatus
    previous: Optional[PaymentStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'line_id': self.line_id, 'status': self.status.value}


@dataclass(frozen=True)
class EditTarget:
    """The single (line, field) pair currently being edited."""

    line_id: str
    field: str

    @property
    def key(self) -> str:
        return f"{self.line_id}-{self.field}"


@dataclass
class SelectionTotals:
    """Aggregates over the selected lines."""

    count: int = 0
    total_estimated_cost: Decimal = Decimal('0')
    total_estimated_vat: Decimal = Decimal('0')
    total_actual_cost: Decimal = Decimal('0')
    total_actual_vat: Decimal = Decimal('0')
    total_invoiced_amount: Decimal = Decimal('0')

    @property
    def estimated_total(self) -> Decimal:
        return self.total_estimated_cost + self.total_estimated_vat

    @property
    def actual_total(self) -> Decimal:
        return self.total_actual_cost + self.total_actual_vat

    @property
    def difference(self) -> Decimal:
        return self.total_invoiced_amount - self.actual_total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'total_estimated_cost': str(self.total_estimated_cost),
            'total_estimated_vat': str(self.total_estimated_vat),
            'total_actual_cost': str(self.total_actual_cost),
            'total_actual_vat': str(self.total_actual_vat),
            'total_invoiced_amount': str(self.total_invoiced_amount),
            'estimated_total': str(self.estimated_total),
            'actual_total': str(self.actual_total),
            'difference': str(self.difference),
        }


@dataclass
class RegistrationBatch:
    """Result of a registration commit."""

    records: List[RegistrationRecord] = field(default_factory=list)
    status_updates: List[StatusUpdate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'records': [record.to_dict() for record in self.records],
            'status_updates': [update.to_dict() for update in self.status_updates],
        }


@dataclass(frozen=True)
class OperationResult:
    """Outcome of an engine operation that may be rejected without raising."""

    ok: bool
    message: Optional[str] = None
