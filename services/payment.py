"""
Payment reconciliation.

A cost_payments row links to at most one invoice (single invoice_id column).
Linking recomputes the invoice's paid total inside the same transaction as
the link write, with the invoice row locked, and marks it PAID once the
total is covered.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import InvalidRequestError, NotFoundError, ConflictError
from database.base import get_utc_now
from database.models import (
    User, Invoice, InvoiceStatus, CostPayment, PaymentType,
    NotificationType, AuditAction,
)
from .audit import AuditRecorder
from .invoice import PAYABLE_STATUSES, total_paid
from .notifications import NotificationDispatcher


logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, db: Session, mailer=None, audit: AuditRecorder = None):
        self.db = db
        self.audit = audit or AuditRecorder(db)
        self.notifier = NotificationDispatcher(db, mailer, self.audit)

    # ==================== QUERIES ====================

    def list_payments(
        self, customer_id: int = None, invoice_id: int = None,
        payment_type: PaymentType = None, unlinked: bool = False,
        skip: int = 0, limit: int = 100,
    ) -> Tuple[List[CostPayment], int]:
        query = self.db.query(CostPayment)
        if customer_id is not None:
            query = query.filter(CostPayment.user_id == customer_id)
        if invoice_id is not None:
            query = query.filter(CostPayment.invoice_id == invoice_id)
        if payment_type:
            query = query.filter(CostPayment.type == payment_type)
        if unlinked:
            query = query.filter(CostPayment.invoice_id == None)
        total = query.count()
        payments = query.order_by(CostPayment.created_at.desc(), CostPayment.id.desc()) \
            .offset(skip).limit(limit).all()
        return payments, total

    def get_payment(self, payment_id: int) -> CostPayment:
        payment = self.db.query(CostPayment).filter(CostPayment.id == payment_id).first()
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    def invoice_summary(self, invoice: Invoice) -> dict:
        paid = total_paid(self.db, invoice.id)
        total = Decimal(str(invoice.total_amount))
        return {
            "total_amount": float(total),
            "total_paid": float(paid),
            "balance_due": float(total - paid),
            "is_fully_paid": paid >= total,
        }

    def customer_balances(self) -> dict:
        """
        Ledger balance per customer (sum of signed cost_payments amounts),
        split into customers in credit and customers owing.
        Customers whose entries cancel out to zero count on neither side.
        """
        rows = self.db.query(
            CostPayment.user_id,
            func.coalesce(func.sum(CostPayment.amount), 0),
        ).group_by(CostPayment.user_id).all()

        positive = negative = Decimal("0.00")
        positive_count = negative_count = 0
        for _, amount in rows:
            balance = Decimal(str(amount)).quantize(Decimal("0.01"))
            if balance > 0:
                positive += balance
                positive_count += 1
            elif balance < 0:
                negative += balance
                negative_count += 1

        return {
            "total_positive_balance": float(positive),
            "total_negative_balance": float(negative),
            "positive_customer_count": positive_count,
            "negative_customer_count": negative_count,
        }

    # ==================== CREATE ====================

    def create_payment(
        self,
        customer_id: int,
        amount,
        payment_type: PaymentType = PaymentType.PAYMENT,
        narration: str = None,
        consumption: float = None,
        payment_date: datetime = None,
        invoice_id: int = None,
        actor_id: int = None,
    ) -> CostPayment:
        """Ledger entry for a customer; optionally reconciled against an invoice at once."""
        customer = self.db.query(User).filter(
            User.id == customer_id,
            User.is_deleted == False
        ).first()
        if not customer:
            raise NotFoundError("Customer not found")

        amount = Decimal(str(amount)).quantize(Decimal("0.01"))
        if amount == 0:
            raise InvalidRequestError("Amount cannot be zero")

        payment = CostPayment(
            user_id=customer_id,
            amount=amount,
            type=payment_type or PaymentType.PAYMENT,
            narration=narration,
            consumption=consumption,
            payment_date=payment_date or get_utc_now(),
        )

        if invoice_id is None:
            self.db.add(payment)
            self.db.commit()
            self.db.refresh(payment)
            self.audit.record(
                AuditAction.PAYMENT_ADDED, "CostPayment", payment.id,
                f"{payment.type.value} of {amount} recorded for {customer.email}",
                user_id=actor_id,
                changes={"amount": amount, "type": payment.type},
            )
            return payment

        return self._add_and_link(payment, invoice_id, payment.payment_date, actor_id)

    def record_payment(
        self, invoice_id: int, amount, payment_date: datetime = None,
        notes: str = None, actor_id: int = None,
    ) -> Tuple[CostPayment, Invoice]:
        """Create a PAYMENT for an invoice's customer and link it, in one transaction."""
        amount = Decimal(str(amount)).quantize(Decimal("0.01"))
        if amount <= 0:
            raise InvalidRequestError("Payment amount must be greater than zero")

        invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFoundError("Invoice not found")

        payment = CostPayment(
            user_id=invoice.user_id,
            amount=amount,
            type=PaymentType.PAYMENT,
            narration=notes or f"Payment for invoice {invoice.invoice_number}",
            payment_date=payment_date or get_utc_now(),
        )
        payment = self._add_and_link(payment, invoice_id, payment_date, actor_id)
        return payment, payment.invoice

    # ==================== RECONCILIATION ====================

    def _lock_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.db.query(Invoice).filter(
            Invoice.id == invoice_id
        ).with_for_update().first()
        if not invoice:
            self.db.rollback()
            raise NotFoundError("Invoice not found")
        return invoice

    def _check_payable(self, invoice: Invoice):
        if invoice.status not in PAYABLE_STATUSES:
            self.db.rollback()
            raise ConflictError(
                f"Invoice {invoice.invoice_number} cannot accept payments (status is {invoice.status.value})"
            )

    def _settle(self, invoice: Invoice, paid_date: datetime = None, actor_id: int = None) -> Optional[InvoiceStatus]:
        """
        Recompute the paid total from the store and flip to PAID when covered.
        Caller commits. Returns the previous status if it changed.
        """
        self.db.flush()
        paid = total_paid(self.db, invoice.id)
        if paid >= Decimal(str(invoice.total_amount)) and invoice.status in PAYABLE_STATUSES:
            previous = invoice.status
            invoice.status = InvoiceStatus.PAID
            invoice.paid_date = paid_date or get_utc_now()
            invoice.updated_by = actor_id
            return previous
        return None

    def _after_link(self, payment: CostPayment, invoice: Invoice,
                    previous: Optional[InvoiceStatus], actor_id: int = None):
        self.audit.record(
            AuditAction.PAYMENT_ADDED, "Invoice", invoice.id,
            f"Payment #{payment.id} of {payment.amount} applied to invoice {invoice.invoice_number}",
            user_id=actor_id,
            changes={"payment_id": payment.id, "amount": payment.amount},
        )
        if previous is not None:
            self.audit.record(
                AuditAction.INVOICE_PAID, "Invoice", invoice.id,
                f"Invoice {invoice.invoice_number} paid in full",
                user_id=actor_id,
                changes={"status": {"from": previous, "to": InvoiceStatus.PAID},
                         "paid_date": invoice.paid_date},
            )
            self.notifier.deliver(invoice, NotificationType.PAYMENT_RECEIVED, actor_id)

    def _add_and_link(self, payment: CostPayment, invoice_id: int,
                      paid_date: datetime = None, actor_id: int = None) -> CostPayment:
        invoice = self._lock_invoice(invoice_id)
        if payment.user_id != invoice.user_id:
            self.db.rollback()
            raise ConflictError("Payment belongs to a different customer than the invoice")
        self._check_payable(invoice)

        payment.invoice_id = invoice.id
        self.db.add(payment)
        previous = self._settle(invoice, paid_date, actor_id)
        self.db.commit()
        self.db.refresh(payment)
        self.db.refresh(invoice)

        self._after_link(payment, invoice, previous, actor_id)
        return payment

    def link_payment(
        self, invoice_id: int, payment_id: int,
        paid_date: datetime = None, actor_id: int = None,
    ) -> Tuple[CostPayment, Invoice]:
        """
        Reconcile an existing payment against an invoice.
        Linking a payment to the invoice it is already on is a no-op.
        """
        invoice = self._lock_invoice(invoice_id)

        payment = self.db.query(CostPayment).filter(
            CostPayment.id == payment_id
        ).with_for_update().first()
        if not payment:
            self.db.rollback()
            raise NotFoundError("Payment not found")

        if payment.invoice_id == invoice.id:
            self.db.rollback()
            return payment, invoice
        if payment.invoice_id is not None:
            self.db.rollback()
            raise ConflictError(f"Payment #{payment.id} is already linked to another invoice")
        if payment.user_id != invoice.user_id:
            self.db.rollback()
            raise ConflictError("Payment belongs to a different customer than the invoice")
        self._check_payable(invoice)

        payment.invoice_id = invoice.id
        previous = self._settle(invoice, paid_date, actor_id)
        self.db.commit()
        self.db.refresh(payment)
        self.db.refresh(invoice)

        self._after_link(payment, invoice, previous, actor_id)
        return payment, invoice

    def delete_payment(self, payment_id: int, actor_id: int = None):
        """
        Remove a payment. The invoice it was linked to keeps its status,
        even if it no longer covers the total.
        """
        payment = self.get_payment(payment_id)
        invoice_id = payment.invoice_id
        amount = payment.amount
        self.db.delete(payment)
        self.db.commit()

        self.audit.record(
            AuditAction.PAYMENT_REMOVED,
            "Invoice" if invoice_id else "CostPayment",
            invoice_id or payment_id,
            f"Payment #{payment_id} of {amount} removed",
            user_id=actor_id,
            changes={"payment_id": payment_id, "amount": amount, "invoice_id": invoice_id},
        )


def payment_to_dict(payment: CostPayment) -> dict:
    return {
        "id": payment.id,
        "user_id": payment.user_id,
        "invoice_id": payment.invoice_id,
        "invoice_number": payment.invoice.invoice_number if payment.invoice else None,
        "amount": float(payment.amount),
        "type": payment.type.value,
        "consumption": payment.consumption,
        "narration": payment.narration,
        "payment_date": payment.payment_date.isoformat() if payment.payment_date else None,
        "created_at": payment.created_at.isoformat() if payment.created_at else None,
    }
