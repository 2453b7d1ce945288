"""
Crypto payment link created through the Confirmo gateway for an invoice.
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Text, Numeric,
    DateTime, ForeignKey, Enum
)
from sqlalchemy.orm import relationship

from ..base import BaseModel


class ConfirmoPaymentStatus(PyEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ConfirmoPayment(BaseModel):

    __tablename__ = 'confirmo_payments'

    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), unique=True, nullable=False)
    confirmo_invoice_id = Column(String(100), unique=True, nullable=False, index=True)
    payment_url = Column(Text, nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), default='USD', nullable=False)
    settlement_currency = Column(String(10), nullable=True)
    status = Column(
        Enum(ConfirmoPaymentStatus, name='confirmo_payment_status'),
        default=ConfirmoPaymentStatus.PENDING,
        nullable=False
    )

    paid_amount = Column(Numeric(18, 8), nullable=True)
    paid_currency = Column(String(20), nullable=True)
    transaction_hash = Column(String(200), nullable=True)

    customer_email = Column(String(255), nullable=True)
    reference = Column(String(50), nullable=True)  # invoice number
    expires_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)

    invoice = relationship("Invoice", back_populates="confirmo_payment")
