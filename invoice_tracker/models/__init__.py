"""Models package - exports all SQLAlchemy models."""
from invoice_tracker.models.supplier import Supplier
from invoice_tracker.models.invoice import Invoice, InvoiceStatus, InvoiceSource
from invoice_tracker.models.invoice_line import InvoiceLine, PaymentStatus, InvoiceType
from invoice_tracker.models.supplier_invoice_line import SupplierInvoiceLine

__all__ = [
    'Supplier',
    'Invoice', 'InvoiceStatus', 'InvoiceSource',
    'InvoiceLine', 'PaymentStatus', 'InvoiceType',
    'SupplierInvoiceLine',
]
