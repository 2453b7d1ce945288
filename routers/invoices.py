"""
Invoices router.
Endpoint: /api/v1/invoices/...

Clients may read their own invoices and open a crypto payment link;
everything else is admin only.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from database import get_db
from database.models import User, InvoiceStatus
from core.dependencies import get_admin_user, get_current_active_user, ensure_customer_access
from schemas.invoice import (
    InvoiceCreate, InvoiceUpdate, RecordPaymentRequest, InvoiceActionRequest, BulkEmailRequest,
)
from services.audit import audit_to_dict
from services.confirmo import get_confirmo_client, ConfirmoPaymentService, confirmo_payment_to_dict
from services.email import get_email_service
from services.email_runs import EmailRunService, run_to_dict
from services.invoice import InvoiceService, invoice_to_dict
from services.notifications import notification_to_dict
from services.payment import PaymentService, payment_to_dict
from services.pdf import render_invoice_pdf

router = APIRouter()


def _crypto_link(db: Session, confirmo_client):
    if confirmo_client is None:
        return None
    return ConfirmoPaymentService(db, confirmo_client).payment_url_for


def _invoice_service(db: Session, mailer, confirmo_client) -> InvoiceService:
    return InvoiceService(db, mailer=mailer, crypto_link=_crypto_link(db, confirmo_client))


# ==================== LIST / CREATE ====================

@router.get("")
async def list_invoices(
    customer_id: Optional[int] = None,
    status: Optional[InvoiceStatus] = None,
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """status=OVERDUE also matches ISSUED invoices past their due date."""
    if not current_user.is_admin:
        customer_id = current_user.id
    invoices, total = InvoiceService(db).list_invoices(customer_id, status, search, skip, limit)
    return {"data": [invoice_to_dict(i, db) for i in invoices], "count": total}


@router.post("", status_code=201)
async def create_invoice(
    body: InvoiceCreate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    invoice = InvoiceService(db).create_invoice(
        customer_id=body.user_id,
        total_miners=body.total_miners,
        unit_price=body.unit_price,
        invoice_type=body.invoice_type,
        invoice_generated_date=body.invoice_generated_date,
        due_date=body.due_date,
        actor_id=admin.id,
    )
    return {"success": True, "message": "Invoice created", "data": invoice_to_dict(invoice, db)}


@router.post("/overdue-sweep")
async def overdue_sweep(
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    """Mark every ISSUED invoice past its due date as OVERDUE."""
    count = InvoiceService(db).sweep_overdue(actor_id=admin.id)
    return {"success": True, "message": f"{count} invoice(s) marked overdue", "count": count}


@router.post("/bulk-send-email")
async def bulk_send_email(
    body: BulkEmailRequest,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
    confirmo_client=Depends(get_confirmo_client),
):
    """
    Email several invoices in one run. CANCELLED invoices are skipped;
    DRAFT ones are reported as failed. See /email-runs/{id} for the report.
    """
    service = EmailRunService(db, mailer=mailer, crypto_link=_crypto_link(db, confirmo_client))
    run = service.bulk_send(body.invoice_ids, actor_id=admin.id)
    return {
        "success": True,
        "message": f"Emails sent for {run.success_count} of {run.total_invoices} invoice(s)",
        "data": run_to_dict(run),
        "run_id": run.id,
    }


@router.post("/notifications/retry")
async def retry_notifications(
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
    confirmo_client=Depends(get_confirmo_client),
):
    """Re-send failed invoice emails that are due for retry."""
    result = _invoice_service(db, mailer, confirmo_client).notifier.retry_failed()
    return {"success": True, **result}


# ==================== SINGLE INVOICE ====================

@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    invoice = InvoiceService(db).get_invoice(invoice_id)
    ensure_customer_access(current_user, invoice.user_id)
    data = invoice_to_dict(invoice, db)
    data["payments"] = [payment_to_dict(p) for p in invoice.payments]
    data["crypto_payment"] = (
        confirmo_payment_to_dict(invoice.confirmo_payment) if invoice.confirmo_payment else None
    )
    return data


@router.get("/{invoice_id}/download")
async def download_invoice_pdf(
    invoice_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Invoice PDF; customers may download their own invoices only."""
    invoice = InvoiceService(db).get_invoice(invoice_id)
    ensure_customer_access(current_user, invoice.user_id)
    content = render_invoice_pdf(invoice)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="invoice-{invoice.invoice_number}.pdf"',
            "Cache-Control": "no-cache, no-store, must-revalidate",
        },
    )


@router.patch("/{invoice_id}")
async def update_invoice(
    invoice_id: int,
    body: InvoiceUpdate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    """Edit miners, unit price, due date or type. DRAFT only."""
    invoice = InvoiceService(db).update_invoice(
        invoice_id, body.model_dump(exclude_unset=True), actor_id=admin.id
    )
    return {"success": True, "message": "Invoice updated", "data": invoice_to_dict(invoice, db)}


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    InvoiceService(db).delete_invoice(invoice_id, actor_id=admin.id)
    return {"success": True, "message": "Invoice deleted"}


@router.post("/{invoice_id}/issue")
async def issue_invoice(
    invoice_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
    confirmo_client=Depends(get_confirmo_client),
):
    """
    DRAFT -> ISSUED and email the customer.
    The invoice stays ISSUED even when the email fails; see `email.success`.
    """
    service = _invoice_service(db, mailer, confirmo_client)
    invoice, email = service.issue_invoice(invoice_id, actor_id=admin.id)
    message = "Invoice issued and sent" if email["success"] else "Invoice issued, email failed"
    return {
        "success": True,
        "message": message,
        "data": invoice_to_dict(invoice, db),
        "email": email,
    }


@router.post("/{invoice_id}/send-email")
async def send_invoice_email(
    invoice_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
    confirmo_client=Depends(get_confirmo_client),
):
    email = _invoice_service(db, mailer, confirmo_client).send_invoice_email(invoice_id, actor_id=admin.id)
    return {"success": email["success"], "email": email}


@router.post("/{invoice_id}/cancel")
async def cancel_invoice(
    invoice_id: int,
    body: Optional[InvoiceActionRequest] = None,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
):
    invoice = InvoiceService(db, mailer=mailer).cancel_invoice(
        invoice_id, actor_id=admin.id, reason=body.reason if body else None
    )
    return {"success": True, "message": "Invoice cancelled", "data": invoice_to_dict(invoice, db)}


@router.post("/{invoice_id}/refund")
async def refund_invoice(
    invoice_id: int,
    body: Optional[InvoiceActionRequest] = None,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    invoice = InvoiceService(db).refund_invoice(
        invoice_id, actor_id=admin.id, reason=body.reason if body else None
    )
    return {"success": True, "message": "Invoice refunded", "data": invoice_to_dict(invoice, db)}


@router.get("/{invoice_id}/audit-log")
async def get_invoice_audit_log(
    invoice_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    entries = InvoiceService(db).audit_log(invoice_id)
    return {"data": [audit_to_dict(e) for e in entries], "count": len(entries)}


@router.get("/{invoice_id}/notifications")
async def get_invoice_notifications(
    invoice_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    invoice = InvoiceService(db).get_invoice(invoice_id)
    rows = sorted(invoice.notifications, key=lambda n: n.id, reverse=True)
    return {"data": [notification_to_dict(n) for n in rows], "count": len(rows)}


# ==================== PAYMENTS ====================

@router.get("/{invoice_id}/payments")
async def get_invoice_payments(
    invoice_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    invoice = InvoiceService(db).get_invoice(invoice_id)
    ensure_customer_access(current_user, invoice.user_id)
    service = PaymentService(db)
    payments, total = service.list_payments(invoice_id=invoice.id)
    return {
        "data": [payment_to_dict(p) for p in payments],
        "count": total,
        "summary": service.invoice_summary(invoice),
    }


@router.post("/{invoice_id}/record-payment", status_code=201)
async def record_payment(
    invoice_id: int,
    body: RecordPaymentRequest,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
):
    """Create a payment for this invoice and reconcile it at once."""
    service = PaymentService(db, mailer=mailer)
    payment, invoice = service.record_payment(
        invoice_id, body.amount, body.payment_date, body.notes, actor_id=admin.id
    )
    return {
        "success": True,
        "message": "Payment recorded",
        "payment": payment_to_dict(payment),
        "invoice": invoice_to_dict(invoice, db),
        "summary": service.invoice_summary(invoice),
    }


@router.post("/{invoice_id}/crypto-payment")
async def create_crypto_payment(
    invoice_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    confirmo_client=Depends(get_confirmo_client),
):
    """Payment link on the crypto gateway; a pending one is reused."""
    invoice = InvoiceService(db).get_invoice(invoice_id)
    ensure_customer_access(current_user, invoice.user_id)
    payment = ConfirmoPaymentService(db, confirmo_client).create_payment_for_invoice(
        invoice_id, actor_id=current_user.id
    )
    return {"success": True, "data": confirmo_payment_to_dict(payment)}
