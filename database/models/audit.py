"""
Audit log and invoice notification models. Both tables are append-only.
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Text, DateTime,
    ForeignKey, Enum, JSON, Index
)
from sqlalchemy.orm import relationship

from ..base import Base, BaseModel, get_utc_now


class AuditAction(PyEnum):
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_UPDATED = "INVOICE_UPDATED"
    INVOICE_ISSUED = "INVOICE_ISSUED"
    INVOICE_SENT_TO_CUSTOMER = "INVOICE_SENT_TO_CUSTOMER"
    INVOICE_OVERDUE = "INVOICE_OVERDUE"
    INVOICE_PAID = "INVOICE_PAID"
    INVOICE_CANCELLED = "INVOICE_CANCELLED"
    INVOICE_REFUNDED = "INVOICE_REFUNDED"
    INVOICE_DELETED = "INVOICE_DELETED"
    PAYMENT_ADDED = "PAYMENT_ADDED"
    PAYMENT_REMOVED = "PAYMENT_REMOVED"
    PRICING_CONFIG_CREATED = "PRICING_CONFIG_CREATED"
    PRICING_CONFIG_UPDATED = "PRICING_CONFIG_UPDATED"
    PRICING_CONFIG_ARCHIVED = "PRICING_CONFIG_ARCHIVED"
    CUSTOMER_CREATED = "CUSTOMER_CREATED"
    CUSTOMER_UPDATED = "CUSTOMER_UPDATED"
    CUSTOMER_DELETED = "CUSTOMER_DELETED"
    EMAIL_SENT = "EMAIL_SENT"
    EMAIL_FAILED = "EMAIL_FAILED"
    EMAIL_RETRY = "EMAIL_RETRY"


class NotificationType(PyEnum):
    INVOICE_ISSUED = "INVOICE_ISSUED"
    INVOICE_CANCELLED = "INVOICE_CANCELLED"
    PAYMENT_REMINDER = "PAYMENT_REMINDER"
    OVERDUE_REMINDER = "OVERDUE_REMINDER"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"


class NotificationStatus(PyEnum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class AuditLog(Base):
    """Immutable record of a state-changing action."""

    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(Enum(AuditAction, name='audit_action'), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)  # NULL for system/webhook actions
    description = Column(Text, nullable=False)
    changes = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=get_utc_now, nullable=False)

    __table_args__ = (
        Index('ix_audit_logs_entity', 'entity_type', 'entity_id'),
        Index('ix_audit_logs_user_id', 'user_id'),
        Index('ix_audit_logs_action', 'action'),
        Index('ix_audit_logs_created_at', 'created_at'),
    )


class InvoiceNotification(BaseModel):
    """One email send attempt for an invoice."""

    __tablename__ = 'invoice_notifications'

    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    notification_type = Column(Enum(NotificationType, name='notification_type'), nullable=False)
    sent_to = Column(String(255), nullable=False)
    cc_emails = Column(Text, nullable=True)  # comma separated
    status = Column(Enum(NotificationStatus, name='notification_status'), nullable=False)
    sent_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    next_retry_at = Column(DateTime, nullable=True)

    invoice = relationship("Invoice", back_populates="notifications")

    __table_args__ = (
        Index('ix_invoice_notifications_invoice_id', 'invoice_id'),
        Index('ix_invoice_notifications_status', 'status'),
    )
