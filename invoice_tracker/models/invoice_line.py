"""Invoice Line model."""
import uuid
from sqlalchemy import Column, String, Integer, Numeric, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from invoice_tracker.database import Base
import enum


class PaymentStatus(enum.Enum):
    """Payment status of a single line."""
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"

    @classmethod
    def parse(cls, value):
        """
        Convert a stored/submitted value into a PaymentStatus.

        None and empty strings mean UNPAID. Unknown values raise ValueError.
        """
        if value is None or value == '':
            return cls.UNPAID
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Invalid payment status: {value}")


class InvoiceType(enum.Enum):
    """Whether a line is invoiced at once or over several supplier invoices."""
    SINGLE = "single"
    MULTI = "multi"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class InvoiceLine(Base):
    """One billable item on an invoice."""
    
    __tablename__ = 'invoice_lines'
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    invoice_id = Column(String(36), ForeignKey('invoices.id'), nullable=True)
    description = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(14, 2), nullable=False, default=0)
    estimated_cost = Column(Numeric(14, 2), nullable=False, default=0)
    actual_cost = Column(Numeric(14, 2), nullable=True)
    estimated_vat = Column(Numeric(14, 2), nullable=True)
    actual_vat = Column(Numeric(14, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    supplier_id = Column(String(36), ForeignKey('suppliers.id'), nullable=False)
    supplier_name = Column(String, nullable=False, default='')
    supplier_part_number = Column(String, nullable=False, default='')
    booking_number = Column(String, nullable=True)
    confirmation_number = Column(String, nullable=True)
    departure_date = Column(String, nullable=True)
    payment_status = Column(
        Enum(PaymentStatus, name='payment_status', values_callable=_enum_values),
        nullable=True,
        default=PaymentStatus.UNPAID
    )
    fully_invoiced = Column(Boolean, nullable=True, default=False)
    invoice_type = Column(
        Enum(InvoiceType, name='invoice_type', values_callable=_enum_values),
        nullable=True,
        default=InvoiceType.SINGLE
    )
    created_at = Column(DateTime(timezone=True), nullable=True, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    invoice = relationship('Invoice', back_populates='lines')
    supplier = relationship('Supplier')
    registrations = relationship('SupplierInvoiceLine', back_populates='invoice_line')
    
    def __repr__(self):
        return f"<InvoiceLine(id={self.id}, description='{self.description}', quantity={self.quantity})>"
