"""
Payments (cost ledger) router.
Endpoint: /api/v1/payments/...
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from database.models import User, PaymentType
from core.dependencies import get_admin_user, get_current_active_user, ensure_customer_access
from schemas.payment import PaymentCreate, PaymentLinkRequest
from services.email import get_email_service
from services.invoice import invoice_to_dict
from services.payment import PaymentService, payment_to_dict

router = APIRouter()


@router.get("")
async def list_payments(
    customer_id: Optional[int] = None,
    invoice_id: Optional[int] = None,
    type: Optional[PaymentType] = None,
    unlinked: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    if not current_user.is_admin:
        customer_id = current_user.id
    payments, total = PaymentService(db).list_payments(
        customer_id, invoice_id, type, unlinked, skip, limit
    )
    return {"data": [payment_to_dict(p) for p in payments], "count": total}


@router.post("", status_code=201)
async def create_payment(
    body: PaymentCreate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
):
    """Ledger entry; with invoice_id it is reconciled immediately."""
    payment = PaymentService(db, mailer=mailer).create_payment(
        customer_id=body.user_id,
        amount=body.amount,
        payment_type=body.type,
        narration=body.narration,
        consumption=body.consumption,
        payment_date=body.payment_date,
        invoice_id=body.invoice_id,
        actor_id=admin.id,
    )
    return {"success": True, "message": "Payment created", "data": payment_to_dict(payment)}


@router.get("/balances")
async def customer_balances(
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    """Totals of customers in credit and customers owing, from the cost ledger."""
    return {"success": True, "data": PaymentService(db).customer_balances()}


@router.get("/{payment_id}")
async def get_payment(
    payment_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    payment = PaymentService(db).get_payment(payment_id)
    ensure_customer_access(current_user, payment.user_id)
    return payment_to_dict(payment)


@router.post("/{payment_id}/link")
async def link_payment(
    payment_id: int,
    body: PaymentLinkRequest,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
):
    service = PaymentService(db, mailer=mailer)
    payment, invoice = service.link_payment(
        body.invoice_id, payment_id, paid_date=body.paid_date, actor_id=admin.id
    )
    return {
        "success": True,
        "message": f"Payment linked to invoice {invoice.invoice_number}",
        "payment": payment_to_dict(payment),
        "invoice": invoice_to_dict(invoice, db),
        "summary": service.invoice_summary(invoice),
    }


@router.delete("/{payment_id}")
async def delete_payment(
    payment_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    PaymentService(db).delete_payment(payment_id, actor_id=admin.id)
    return {"success": True, "message": "Payment deleted"}
