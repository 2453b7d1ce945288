"""
Bulk invoice emails with a per-run report.

Each invoice goes through NotificationDispatcher.deliver, so a bulk send
leaves the same notification rows and audit entries as a single send. The
run row records who sent what and how many failed; failed results can be
resent later and are updated in place.
"""

import logging
from typing import List, Tuple

from sqlalchemy.orm import Session

from core.exceptions import InvalidRequestError, NotFoundError
from database.base import get_utc_now
from database.models import (
    Invoice, InvoiceStatus, NotificationType,
    EmailRunStatus, EmailSendRun, EmailSendResult,
)
from .audit import AuditRecorder
from .invoice import PAYABLE_STATUSES, effective_status
from .notifications import NotificationDispatcher


logger = logging.getLogger(__name__)

RESULT_FILTERS = ("success", "failed")


class EmailRunService:
    def __init__(self, db: Session, mailer=None, audit: AuditRecorder = None, crypto_link=None):
        self.db = db
        self.audit = audit or AuditRecorder(db)
        self.notifier = NotificationDispatcher(db, mailer, self.audit, crypto_link)

    def _send_one(self, invoice: Invoice, actor_id: int = None) -> dict:
        """deliver() for a payable invoice; anything else fails without a send attempt."""
        if invoice.status not in PAYABLE_STATUSES:
            return {
                "success": False,
                "error": f"Only issued or overdue invoices can be emailed (status is {invoice.status.value})",
            }
        notification_type = NotificationType.INVOICE_ISSUED
        if effective_status(invoice) == InvoiceStatus.OVERDUE:
            notification_type = NotificationType.OVERDUE_REMINDER
        return self.notifier.deliver(invoice, notification_type, actor_id)

    # ==================== RUNS ====================

    def bulk_send(self, invoice_ids: List[int], actor_id: int = None) -> EmailSendRun:
        if not invoice_ids:
            raise InvalidRequestError("Invoice IDs are required")

        invoices = self.db.query(Invoice).filter(
            Invoice.id.in_(invoice_ids),
            Invoice.status != InvoiceStatus.CANCELLED,
        ).order_by(Invoice.id).all()
        if not invoices:
            raise NotFoundError("No invoices found")

        run = EmailSendRun(
            type="INVOICE",
            status=EmailRunStatus.IN_PROGRESS,
            total_invoices=len(invoices),
            created_by=actor_id,
            started_at=get_utc_now(),
        )
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)

        for invoice in invoices:
            customer = invoice.user
            outcome = self._send_one(invoice, actor_id)
            result = EmailSendResult(
                run_id=run.id,
                invoice_id=invoice.id,
                customer_id=customer.id,
                customer_name=customer.name or "Unknown",
                customer_email=customer.email,
                success=outcome["success"],
                error_message=outcome["error"],
                sent_at=get_utc_now() if outcome["success"] else None,
            )
            self.db.add(result)
            if outcome["success"]:
                run.success_count += 1
            else:
                run.failure_count += 1
            self.db.commit()

        run.status = EmailRunStatus.COMPLETED
        run.completed_at = get_utc_now()
        self.db.commit()
        self.db.refresh(run)

        logger.info(
            f"Email run #{run.id}: {run.success_count}/{run.total_invoices} sent, "
            f"{run.failure_count} failed"
        )
        return run

    def list_runs(self, skip: int = 0, limit: int = 50) -> Tuple[List[EmailSendRun], int]:
        query = self.db.query(EmailSendRun)
        total = query.count()
        runs = query.order_by(EmailSendRun.created_at.desc(), EmailSendRun.id.desc()) \
            .offset(skip).limit(limit).all()
        return runs, total

    def get_run(self, run_id: int) -> EmailSendRun:
        run = self.db.query(EmailSendRun).filter(EmailSendRun.id == run_id).first()
        if not run:
            raise NotFoundError("Email run not found")
        return run

    def run_results(
        self, run_id: int, status: str = None, skip: int = 0, limit: int = 10,
    ) -> Tuple[EmailSendRun, List[EmailSendResult], int]:
        """status: "success", "failed" or None for all."""
        if status is not None and status not in RESULT_FILTERS:
            raise InvalidRequestError(f"status must be one of: {', '.join(RESULT_FILTERS)}")
        run = self.get_run(run_id)

        query = self.db.query(EmailSendResult).filter(EmailSendResult.run_id == run.id)
        if status == "success":
            query = query.filter(EmailSendResult.success == True)
        elif status == "failed":
            query = query.filter(EmailSendResult.success == False)
        total = query.count()
        results = query.order_by(EmailSendResult.id).offset(skip).limit(limit).all()
        return run, results, total

    def resend(self, run_id: int, result_ids: List[int], actor_id: int = None) -> dict:
        """Send the chosen results again and update them and the run counters."""
        if not result_ids:
            raise InvalidRequestError("Result IDs are required")
        run = self.get_run(run_id)

        results = self.db.query(EmailSendResult).filter(
            EmailSendResult.run_id == run.id,
            EmailSendResult.id.in_(result_ids),
        ).order_by(EmailSendResult.id).all()
        if not results:
            raise NotFoundError("No results found to resend")

        resent, failed = [], []
        for result in results:
            was_success = result.success
            if result.invoice is None:
                outcome = {"success": False, "error": "Invoice no longer exists"}
            else:
                outcome = self._send_one(result.invoice, actor_id)

            result.success = outcome["success"]
            result.error_message = outcome["error"]
            result.sent_at = get_utc_now() if outcome["success"] else None
            if outcome["success"] and not was_success:
                run.success_count += 1
                run.failure_count -= 1
            elif was_success and not outcome["success"]:
                run.success_count -= 1
                run.failure_count += 1
            self.db.commit()

            if outcome["success"]:
                resent.append(result.invoice_id)
            else:
                failed.append({"id": result.invoice_id, "error": outcome["error"]})

        logger.info(f"Email run #{run.id} resend: {len(resent)} sent, {len(failed)} failed")
        return {
            "resent": resent,
            "failed": failed,
            "summary": {"total": len(results), "successful": len(resent), "failed": len(failed)},
        }


def run_to_dict(run: EmailSendRun) -> dict:
    creator = run.creator
    return {
        "id": run.id,
        "type": run.type,
        "status": run.status.value,
        "total_invoices": run.total_invoices,
        "success_count": run.success_count,
        "failure_count": run.failure_count,
        "created_by": {"id": creator.id, "name": creator.name, "email": creator.email} if creator else None,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "created_at": run.created_at.isoformat() if run.created_at else None,
    }


def result_to_dict(result: EmailSendResult) -> dict:
    invoice = result.invoice
    return {
        "id": result.id,
        "run_id": result.run_id,
        "invoice_id": result.invoice_id,
        "invoice_number": invoice.invoice_number if invoice else None,
        "total_amount": float(invoice.total_amount) if invoice else None,
        "due_date": invoice.due_date.isoformat() if invoice else None,
        "customer_id": result.customer_id,
        "customer_name": result.customer_name,
        "customer_email": result.customer_email,
        "success": result.success,
        "error_message": result.error_message,
        "sent_at": result.sent_at.isoformat() if result.sent_at else None,
    }
