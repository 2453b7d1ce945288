"""
Invoice email delivery with notification bookkeeping.

Every send attempt leaves an invoice_notifications row. Failed sends are
scheduled for retry with exponential backoff (5, 10, 20 minutes) and given
up after MAX_RETRIES attempts.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Callable

from sqlalchemy.orm import Session

from core.exceptions import BillingError
from database.base import get_utc_now
from database.models import (
    Invoice, InvoiceNotification, NotificationType,
    NotificationStatus, AuditAction,
)
from .audit import AuditRecorder
from .email import EmailService, build_cc_list
from .pdf import render_invoice_pdf


logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = timedelta(minutes=5)

# Types whose email carries the invoice PDF
PDF_TYPES = (
    NotificationType.INVOICE_ISSUED,
    NotificationType.PAYMENT_REMINDER,
    NotificationType.OVERDUE_REMINDER,
)


def next_retry_time(retry_count: int, now: datetime = None) -> Optional[datetime]:
    """When to try again after `retry_count` retries, or None once exhausted."""
    if retry_count >= MAX_RETRIES:
        return None
    now = now or get_utc_now()
    return now + RETRY_BASE_DELAY * (2 ** retry_count)


class NotificationDispatcher:
    def __init__(
        self,
        db: Session,
        mailer: Optional[EmailService],
        audit: AuditRecorder = None,
        crypto_link: Optional[Callable[[Invoice], Optional[str]]] = None,
    ):
        self.db = db
        self.mailer = mailer
        self.audit = audit or AuditRecorder(db)
        self.crypto_link = crypto_link

    def _send(self, invoice: Invoice, notification_type: NotificationType, cc: list):
        """Raise BillingError on any failure. No email goes out without its PDF."""
        if self.mailer is None:
            raise BillingError("Email is not configured")

        if notification_type in PDF_TYPES:
            crypto_url = self.crypto_link(invoice) if self.crypto_link else None
            try:
                pdf = render_invoice_pdf(invoice, crypto_url)
            except Exception as e:
                logger.error(f"PDF generation failed for invoice {invoice.invoice_number}: {e}")
                raise BillingError("PDF generation failed")
            self.mailer.send_invoice(invoice, pdf, cc, crypto_url)
        elif notification_type == NotificationType.INVOICE_CANCELLED:
            self.mailer.send_cancellation(invoice, cc)
        elif notification_type == NotificationType.PAYMENT_RECEIVED:
            self.mailer.send_payment_received(invoice, cc)

    def deliver(self, invoice: Invoice, notification_type: NotificationType,
                actor_id: int = None) -> dict:
        """
        Send one email and record the attempt.
        Returns {"success": bool, "error": str | None, "notification_id": int | None}.
        """
        customer = invoice.user
        cc = build_cc_list(customer)
        try:
            self._send(invoice, notification_type, cc)
        except BillingError as e:
            logger.warning(f"Email for invoice {invoice.invoice_number} failed: {e.message}")
            row = self.audit.notification(
                invoice.id, notification_type, customer.email,
                NotificationStatus.FAILED, cc,
                failure_reason=e.message,
                next_retry_at=next_retry_time(0),
            )
            self.audit.record(
                AuditAction.EMAIL_FAILED, "Invoice", invoice.id,
                f"{notification_type.value} email to {customer.email} failed: {e.message}",
                user_id=actor_id,
            )
            return {"success": False, "error": e.message, "notification_id": row.id if row else None}

        row = self.audit.notification(
            invoice.id, notification_type, customer.email,
            NotificationStatus.SENT, cc,
        )
        self.audit.record(
            AuditAction.EMAIL_SENT, "Invoice", invoice.id,
            f"{notification_type.value} email sent to {customer.email}",
            user_id=actor_id,
            changes={"cc": cc},
        )
        if notification_type == NotificationType.INVOICE_ISSUED:
            self.audit.record(
                AuditAction.INVOICE_SENT_TO_CUSTOMER, "Invoice", invoice.id,
                f"Invoice {invoice.invoice_number} sent to {customer.email}",
                user_id=actor_id,
            )
        return {"success": True, "error": None, "notification_id": row.id if row else None}

    def retry_failed(self, now: datetime = None) -> dict:
        """Re-send FAILED notifications whose retry time has come."""
        now = now or get_utc_now()
        due = self.db.query(InvoiceNotification).filter(
            InvoiceNotification.status == NotificationStatus.FAILED,
            InvoiceNotification.next_retry_at != None,
            InvoiceNotification.next_retry_at <= now,
            InvoiceNotification.retry_count < MAX_RETRIES,
        ).order_by(InvoiceNotification.next_retry_at).all()

        sent = failed = 0
        for row in due:
            invoice = row.invoice
            cc = row.cc_emails.split(",") if row.cc_emails else []
            row.retry_count += 1
            try:
                self._send(invoice, row.notification_type, cc)
            except BillingError as e:
                row.failure_reason = e.message
                row.next_retry_at = next_retry_time(row.retry_count, now)
                failed += 1
                outcome = f"failed ({e.message})"
            else:
                row.status = NotificationStatus.SENT
                row.sent_at = now
                row.next_retry_at = None
                sent += 1
                outcome = "sent"
            self.db.commit()

            self.audit.record(
                AuditAction.EMAIL_RETRY, "Invoice", invoice.id,
                f"Retry {row.retry_count}/{MAX_RETRIES} of {row.notification_type.value} email: {outcome}",
            )

        if due:
            logger.info(f"Notification retry: {sent} sent, {failed} failed")
        return {"attempted": len(due), "sent": sent, "failed": failed}


def notification_to_dict(row: InvoiceNotification) -> dict:
    return {
        "id": row.id,
        "invoice_id": row.invoice_id,
        "notification_type": row.notification_type.value,
        "sent_to": row.sent_to,
        "cc_emails": row.cc_emails.split(",") if row.cc_emails else [],
        "status": row.status.value,
        "sent_at": row.sent_at.isoformat() if row.sent_at else None,
        "failure_reason": row.failure_reason,
        "retry_count": row.retry_count,
        "next_retry_at": row.next_retry_at.isoformat() if row.next_retry_at else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
