"""Invoice model."""
import uuid
from sqlalchemy import Column, String, Date, Integer, Numeric, DateTime, Enum, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from invoice_tracker.database import Base
import enum


class InvoiceStatus(enum.Enum):
    """Invoice status enum."""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class InvoiceSource(enum.Enum):
    """Where the invoice was entered."""
    FORTNOX = "Fortnox"
    MANUAL = "Manual"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Invoice(Base):
    """Supplier invoice."""
    
    __tablename__ = 'invoices'
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    invoice_number = Column(String, nullable=False)
    reference = Column(String, nullable=False, default='')
    supplier_id = Column(String(36), ForeignKey('suppliers.id'), nullable=False)
    status = Column(
        Enum(InvoiceStatus, name='invoice_status', values_callable=_enum_values),
        nullable=False,
        default=InvoiceStatus.PENDING
    )
    invoice_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    vat = Column(Numeric(14, 2), nullable=True)
    total_vat = Column(Numeric(14, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    notes = Column(Text, nullable=True)
    ocr = Column(String, nullable=True)
    source = Column(
        Enum(InvoiceSource, name='invoice_source', values_callable=_enum_values),
        nullable=True,
        default=InvoiceSource.MANUAL
    )
    account = Column(String, nullable=True)
    vat_account = Column(String, nullable=True)
    periodization_year = Column(Integer, nullable=True)
    periodization_month = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    supplier = relationship('Supplier', back_populates='invoices')
    lines = relationship(
        'InvoiceLine',
        back_populates='invoice',
        cascade='all, delete-orphan',
        order_by='InvoiceLine.position'
    )
    
    def __repr__(self):
        status = self.status.value if self.status else None
        return f"<Invoice(id={self.id}, invoice_number='{self.invoice_number}', status={status})>"
