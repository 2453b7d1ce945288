"""
Bulk invoice email runs.

One email_send_runs row per bulk send, one email_send_results row per invoice
in it. Results keep a snapshot of the customer's name and email so the report
still reads correctly after the customer changes.
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Text, Boolean,
    DateTime, ForeignKey, Enum, Index
)
from sqlalchemy.orm import relationship

from ..base import BaseModel


class EmailRunStatus(PyEnum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class EmailSendRun(BaseModel):
    """A bulk invoice email send and its counters."""

    __tablename__ = 'email_send_runs'

    type = Column(String(30), default='INVOICE', nullable=False)
    status = Column(Enum(EmailRunStatus, name='email_run_status'), default=EmailRunStatus.IN_PROGRESS, nullable=False)
    total_invoices = Column(Integer, default=0, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)

    created_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    creator = relationship("User", foreign_keys=[created_by])
    results = relationship(
        "EmailSendResult", back_populates="run",
        cascade="all, delete-orphan", order_by="EmailSendResult.id"
    )

    __table_args__ = (
        Index('ix_email_send_runs_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<EmailSendRun(id={self.id}, status={self.status}, {self.success_count}/{self.total_invoices})>"


class EmailSendResult(BaseModel):
    """Outcome of one invoice email within a run."""

    __tablename__ = 'email_send_results'

    run_id = Column(Integer, ForeignKey('email_send_runs.id', ondelete='CASCADE'), nullable=False)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True)
    customer_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)

    success = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)

    run = relationship("EmailSendRun", back_populates="results")
    invoice = relationship("Invoice")

    __table_args__ = (
        Index('ix_email_send_results_run_id', 'run_id'),
        Index('ix_email_send_results_invoice_id', 'invoice_id'),
    )
