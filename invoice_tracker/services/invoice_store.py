"""
Persistence store for the reconciliation workflow.

`InvoiceStore` is the contract the engine talks to; `SqlAlchemyInvoiceStore`
backs it with the relational database.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from invoice_tracker.exceptions import PersistenceError
from invoice_tracker.models import Invoice, InvoiceLine, SupplierInvoiceLine
from invoice_tracker.services.line_aggregator import aggregate_line_repository
from invoice_tracker.services.records import EnrichedLine, RegistrationRecord, StatusUpdate

logger = logging.getLogger(__name__)

LINES_CACHE_MODULE = 'lines'
LINES_CACHE_KEY = 'repository'


class InvoiceStore:
    """
    Abstract persistence contract used by the reconciliation engine.

    Not meant to be instantiated directly: subclasses implement every fetch
    and write method. `register` has a non-atomic default that stores
    without transactions may keep.
    """

    def fetch_invoices(self) -> List[Invoice]:
        raise NotImplementedError

    def fetch_line_repository(self) -> List[EnrichedLine]:
        raise NotImplementedError

    def fetch_registration_records(self) -> List[RegistrationRecord]:
        raise NotImplementedError

    def insert_registration_records(self, records: Sequence[RegistrationRecord]) -> None:
        raise NotImplementedError

    def update_line_payment_status(self, updates: Sequence[StatusUpdate]) -> None:
        raise NotImplementedError

    def register(self, records: Sequence[RegistrationRecord], status_updates: Sequence[StatusUpdate]) -> None:
        """Persist a registration batch. Implementations should make this atomic."""
        self.insert_registration_records(records)
        if status_updates:
            self.update_line_payment_status(status_updates)


def record_from_model(row: SupplierInvoiceLine) -> RegistrationRecord:
    return RegistrationRecord(
        id=row.id,
        invoice_line_id=row.invoice_line_id,
        actual_cost=Decimal(str(row.actual_cost or 0)),
        actual_vat=Decimal(str(row.actual_vat or 0)),
        currency=row.currency,
        created_at=row.created_at,
        description=row.description,
        supplier_name=row.supplier_name,
        created_by=row.created_by,
        supplier_invoice_id=row.supplier_invoice_id,
    )


class SqlAlchemyInvoiceStore(InvoiceStore):
    """InvoiceStore backed by a SQLAlchemy session."""

    def __init__(self, session, cache=None, default_currency: str = 'USD', lines_ttl: Optional[int] = None):
        self.session = session
        self.cache = cache
        self.default_currency = default_currency
        self.lines_ttl = lines_ttl

    def fetch_invoices(self) -> List[Invoice]:
        return (
            self.session.query(Invoice)
            .options(selectinload(Invoice.lines), selectinload(Invoice.supplier))
            .order_by(Invoice.created_at.desc())
            .all()
        )

    def _load_line_repository(self) -> List[dict]:
        lines = (
            self.session.query(InvoiceLine)
            .options(
                selectinload(InvoiceLine.invoice).selectinload(Invoice.supplier),
                selectinload(InvoiceLine.supplier),
            )
            .order_by(InvoiceLine.invoice_id, InvoiceLine.position)
            .all()
        )
        return [line.to_dict() for line in aggregate_line_repository(lines, self.default_currency)]

    def fetch_line_repository(self) -> List[EnrichedLine]:
        if self.cache is not None:
            rows = self.cache.memoize(LINES_CACHE_MODULE, LINES_CACHE_KEY, self._load_line_repository, self.lines_ttl)
        else:
            rows = self._load_line_repository()
        return [EnrichedLine.from_dict(row) for row in rows]

    def fetch_registration_records(self) -> List[RegistrationRecord]:
        rows = (
            self.session.query(SupplierInvoiceLine)
            .order_by(SupplierInvoiceLine.created_at)
            .all()
        )
        return [record_from_model(row) for row in rows]

    def _add_records(self, records: Sequence[RegistrationRecord]) -> None:
        for record in records:
            self.session.add(SupplierInvoiceLine(
                id=record.id,
                invoice_line_id=record.invoice_line_id,
                supplier_invoice_id=record.supplier_invoice_id,
                actual_cost=record.actual_cost,
                actual_vat=record.actual_vat,
                currency=record.currency,
                description=record.description,
                supplier_name=record.supplier_name,
                created_at=record.created_at,
                created_by=record.created_by,
            ))

    def _apply_status_updates(self, updates: Sequence[StatusUpdate]) -> None:
        for update in updates:
            line = self.session.query(InvoiceLine).filter(InvoiceLine.id == update.line_id).first()
            if line is None:
                raise PersistenceError(f'Invoice line {update.line_id} no longer exists')
            line.payment_status = update.status

    def _commit(self, action: str) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error while {action}: {e}", exc_info=True)
            raise PersistenceError(f'Could not save changes while {action}')
        self.invalidate_lines()

    def _run(self, action: str, work) -> None:
        try:
            work()
        except PersistenceError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error while {action}: {e}", exc_info=True)
            raise PersistenceError(f'Could not save changes while {action}')
        self._commit(action)

    def insert_registration_records(self, records: Sequence[RegistrationRecord]) -> None:
        self._run('registering costs', lambda: self._add_records(records))
        logger.info(f"Inserted {len(records)} registration record(s)")

    def update_line_payment_status(self, updates: Sequence[StatusUpdate]) -> None:
        self._run('updating payment status', lambda: self._apply_status_updates(updates))
        logger.info(f"Updated payment status of {len(updates)} line(s)")

    def register(self, records: Sequence[RegistrationRecord], status_updates: Sequence[StatusUpdate]) -> None:
        """Insert records and apply status updates in one transaction."""
        def work():
            self._add_records(records)
            self.session.flush()
            self._apply_status_updates(status_updates)

        self._run('registering costs', work)
        logger.info(
            f"Registered {len(records)} record(s) and {len(status_updates)} status update(s)"
        )

    def invalidate_lines(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_module(LINES_CACHE_MODULE)
