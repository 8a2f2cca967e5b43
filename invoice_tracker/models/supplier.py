"""Supplier model."""
import uuid
from sqlalchemy import Column, String, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from invoice_tracker.database import Base


class Supplier(Base):
    """Supplier that sends us invoices."""
    
    __tablename__ = 'suppliers'
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, default='')
    phone = Column(String, nullable=False, default='')
    account_number = Column(String, nullable=True)
    default_currency = Column(String(3), nullable=True)
    currency_rate = Column(Numeric(14, 6), nullable=True)
    address = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    city = Column(String, nullable=True)
    country = Column(String, nullable=True)
    iban = Column(String, nullable=True)
    swift = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    invoices = relationship('Invoice', back_populates='supplier')
    
    def __repr__(self):
        return f"<Supplier(id={self.id}, name='{self.name}')>"
