"""
Invoice and payment models.

Invoice totals are fixed at creation (miners x unit price) and only change
through an explicit edit while the invoice is still DRAFT.
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Text, Numeric, Float,
    DateTime, ForeignKey, Enum, Index
)
from sqlalchemy.orm import relationship

from ..base import BaseModel


class InvoiceStatus(PyEnum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class InvoiceType(PyEnum):
    ELECTRICITY_CHARGES = "ELECTRICITY_CHARGES"
    HARDWARE_PURCHASE = "HARDWARE_PURCHASE"


class PaymentType(PyEnum):
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    ELECTRICITY_CHARGES = "ELECTRICITY_CHARGES"


class Invoice(BaseModel):
    """Customer invoice for hosting (or hardware) charges."""

    __tablename__ = 'invoices'

    # Format: YYYYMMDD + 3-digit daily sequence
    invoice_number = Column(String(20), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='RESTRICT'), nullable=False)
    invoice_type = Column(
        Enum(InvoiceType, name='invoice_type'),
        default=InvoiceType.ELECTRICITY_CHARGES,
        nullable=False
    )

    total_miners = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)

    status = Column(Enum(InvoiceStatus, name='invoice_status'), default=InvoiceStatus.DRAFT, nullable=False)
    invoice_generated_date = Column(DateTime, nullable=False)
    issued_date = Column(DateTime, nullable=True)
    due_date = Column(DateTime, nullable=False)
    paid_date = Column(DateTime, nullable=True)

    created_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    updated_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    user = relationship("User", foreign_keys=[user_id])
    payments = relationship("CostPayment", back_populates="invoice")
    notifications = relationship("InvoiceNotification", back_populates="invoice", cascade="all, delete-orphan")
    confirmo_payment = relationship("ConfirmoPayment", back_populates="invoice", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_invoices_user_id', 'user_id'),
        Index('ix_invoices_status', 'status'),
        Index('ix_invoices_due_date', 'due_date'),
    )

    def __repr__(self):
        return f"<Invoice(id={self.id}, number='{self.invoice_number}', status={self.status})>"


class CostPayment(BaseModel):
    """
    Customer ledger entry: payment, adjustment or electricity charge.
    Amount is signed. A single invoice_id column means a payment links to
    at most one invoice.
    """

    __tablename__ = 'cost_payments'

    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    consumption = Column(Float, nullable=True)
    type = Column(Enum(PaymentType, name='payment_type'), default=PaymentType.PAYMENT, nullable=False)
    narration = Column(Text, nullable=True)
    payment_date = Column(DateTime, nullable=True)

    user = relationship("User")
    invoice = relationship("Invoice", back_populates="payments")

    __table_args__ = (
        Index('ix_cost_payments_user_id', 'user_id'),
        Index('ix_cost_payments_invoice_id', 'invoice_id'),
    )
