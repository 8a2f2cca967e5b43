"""Supplier Invoice Line model (registration of an actual cost against a line)."""
import uuid
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from invoice_tracker.database import Base


class SupplierInvoiceLine(Base):
    """Append-only record of an actual cost/VAT registered against an invoice line."""
    
    __tablename__ = 'supplier_invoice_lines'
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    invoice_line_id = Column(String(36), ForeignKey('invoice_lines.id'), nullable=False)
    supplier_invoice_id = Column(String(36), ForeignKey('invoices.id'), nullable=True)
    actual_cost = Column(Numeric(14, 2), nullable=False)
    actual_vat = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    description = Column(String, nullable=False)
    supplier_name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=True, server_default=func.now())
    created_by = Column(String, nullable=True)
    
    # Relationships
    invoice_line = relationship('InvoiceLine', back_populates='registrations')
    supplier_invoice = relationship('Invoice')
    
    def __repr__(self):
        return f"<SupplierInvoiceLine(id={self.id}, line={self.invoice_line_id}, actual_cost={self.actual_cost})>"
