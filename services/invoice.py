"""
Invoice lifecycle.

DRAFT -> ISSUED -> PAID | OVERDUE -> REFUNDED, with DRAFT/ISSUED -> CANCELLED.
OVERDUE is derived (ISSUED and past its due date); effective_status() computes
it and sweep_overdue() materializes it into the stored status.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Tuple

from sqlalchemy import func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import InvalidRequestError, NotFoundError, ConflictError
from database.base import get_utc_now
from database.models import (
    User, Invoice, InvoiceStatus, InvoiceType, CostPayment,
    NotificationType, AuditAction,
)
from .audit import AuditRecorder, diff
from .customers import MinerService
from .notifications import NotificationDispatcher
from .pricing import PricingService, validate_unit_price


logger = logging.getLogger(__name__)

MIN_MINERS = 1
MAX_MINERS = 10000
MAX_DAILY_SEQUENCE = 999

ALLOWED_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.ISSUED, InvoiceStatus.CANCELLED},
    InvoiceStatus.ISSUED: {InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED},
    InvoiceStatus.OVERDUE: {InvoiceStatus.PAID, InvoiceStatus.REFUNDED},
    InvoiceStatus.PAID: {InvoiceStatus.REFUNDED},
    InvoiceStatus.CANCELLED: set(),
    InvoiceStatus.REFUNDED: set(),
}

PAYABLE_STATUSES = (InvoiceStatus.ISSUED, InvoiceStatus.OVERDUE)
DELETABLE_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED)


def can_transition(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def effective_status(invoice: Invoice, now: datetime = None) -> InvoiceStatus:
    """Stored status, with ISSUED reported as OVERDUE once past due."""
    now = now or get_utc_now()
    if invoice.status == InvoiceStatus.ISSUED and invoice.due_date and now > invoice.due_date:
        return InvoiceStatus.OVERDUE
    return invoice.status


def compute_total(total_miners: int, unit_price) -> Decimal:
    total = Decimal(total_miners) * Decimal(str(unit_price))
    return total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def validate_miners(total_miners) -> int:
    if total_miners is None or int(total_miners) != total_miners:
        raise InvalidRequestError("Number of miners must be a whole number")
    if total_miners < MIN_MINERS or total_miners > MAX_MINERS:
        raise InvalidRequestError(f"Number of miners must be between {MIN_MINERS} and {MAX_MINERS}")
    return int(total_miners)


def total_paid(db: Session, invoice_id: int) -> Decimal:
    value = db.query(func.coalesce(func.sum(CostPayment.amount), 0)).filter(
        CostPayment.invoice_id == invoice_id
    ).scalar()
    return Decimal(str(value)).quantize(Decimal("0.01"))


class InvoiceService:
    def __init__(self, db: Session, mailer=None, audit: AuditRecorder = None, crypto_link=None):
        self.db = db
        self.audit = audit or AuditRecorder(db)
        self.pricing = PricingService(db, self.audit)
        self.miners = MinerService(db)
        self.notifier = NotificationDispatcher(db, mailer, self.audit, crypto_link)

    # ==================== QUERIES ====================

    def list_invoices(
        self, customer_id: int = None, status: InvoiceStatus = None,
        search: str = None, skip: int = 0, limit: int = 50, now: datetime = None,
    ) -> Tuple[List[Invoice], int]:
        now = now or get_utc_now()
        query = self.db.query(Invoice)
        if customer_id is not None:
            query = query.filter(Invoice.user_id == customer_id)
        if status == InvoiceStatus.OVERDUE:
            query = query.filter(or_(
                Invoice.status == InvoiceStatus.OVERDUE,
                and_(Invoice.status == InvoiceStatus.ISSUED, Invoice.due_date < now),
            ))
        elif status == InvoiceStatus.ISSUED:
            query = query.filter(Invoice.status == InvoiceStatus.ISSUED, Invoice.due_date >= now)
        elif status is not None:
            query = query.filter(Invoice.status == status)
        if search:
            query = query.filter(Invoice.invoice_number.ilike(f"%{search}%"))

        total = query.count()
        invoices = query.order_by(
            Invoice.invoice_generated_date.desc(), Invoice.id.desc()
        ).offset(skip).limit(limit).all()
        return invoices, total

    def get_invoice(self, invoice_id: int, lock: bool = False) -> Invoice:
        query = self.db.query(Invoice).filter(Invoice.id == invoice_id)
        if lock:
            query = query.with_for_update()
        invoice = query.first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        return invoice

    def audit_log(self, invoice_id: int) -> list:
        self.get_invoice(invoice_id)
        return self.audit.history("Invoice", invoice_id)

    # ==================== NUMBERING ====================

    def next_invoice_number(self, at: datetime) -> str:
        """YYYYMMDD + 3-digit sequence, one past the highest issued that day."""
        prefix = at.strftime("%Y%m%d")
        last = self.db.query(Invoice.invoice_number).filter(
            Invoice.invoice_number.like(f"{prefix}%")
        ).order_by(Invoice.invoice_number.desc()).first()

        seq = 1
        if last:
            try:
                seq = int(last[0][len(prefix):]) + 1
            except ValueError:
                seq = 1
        if seq > MAX_DAILY_SEQUENCE:
            raise ConflictError(
                f"Daily invoice limit reached for {at.strftime('%Y-%m-%d')} "
                f"({MAX_DAILY_SEQUENCE} invoices)"
            )
        return f"{prefix}{seq:03d}"

    # ==================== CREATE / EDIT ====================

    def create_invoice(
        self,
        customer_id: int,
        total_miners: int = None,
        unit_price=None,
        invoice_type: InvoiceType = InvoiceType.ELECTRICITY_CHARGES,
        invoice_generated_date: datetime = None,
        due_date: datetime = None,
        actor_id: int = None,
    ) -> Invoice:
        customer = self.db.query(User).filter(
            User.id == customer_id,
            User.is_deleted == False
        ).first()
        if not customer:
            raise NotFoundError("Customer not found")

        generated = invoice_generated_date or get_utc_now()

        if total_miners is None:
            total_miners = self.miners.active_miner_count(customer_id)
            if total_miners == 0:
                raise InvalidRequestError("Customer has no active miners")
        miners = validate_miners(total_miners)

        if unit_price is None:
            unit_price = self.pricing.resolve_unit_price(customer_id, generated)
        price = validate_unit_price(unit_price)

        if due_date is None:
            due_date = generated + timedelta(days=self.pricing.default_due_days())
        elif due_date < generated:
            raise InvalidRequestError("Due date cannot be before the invoice date")

        invoice = Invoice(
            invoice_number=self.next_invoice_number(generated),
            user_id=customer_id,
            invoice_type=invoice_type or InvoiceType.ELECTRICITY_CHARGES,
            total_miners=miners,
            unit_price=price,
            total_amount=compute_total(miners, price),
            status=InvoiceStatus.DRAFT,
            invoice_generated_date=generated,
            due_date=due_date,
            created_by=actor_id,
            updated_by=actor_id,
        )
        self.db.add(invoice)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Invoice number already taken, please retry")
        self.db.refresh(invoice)

        self.audit.record(
            AuditAction.INVOICE_CREATED, "Invoice", invoice.id,
            f"Invoice {invoice.invoice_number} created for {customer.email}: "
            f"{miners} x {price} = {invoice.total_amount}",
            user_id=actor_id,
            changes={
                "status": {"from": None, "to": InvoiceStatus.DRAFT},
                "total_miners": miners,
                "unit_price": price,
                "total_amount": invoice.total_amount,
            },
        )
        return invoice

    def update_invoice(self, invoice_id: int, data: dict, actor_id: int = None) -> Invoice:
        """Edit a DRAFT invoice; the total is recomputed from miners and price."""
        invoice = self.get_invoice(invoice_id, lock=True)
        if invoice.status != InvoiceStatus.DRAFT:
            self.db.rollback()
            raise ConflictError(f"Only DRAFT invoices can be edited (status is {invoice.status.value})")

        fields = ("total_miners", "unit_price", "total_amount", "due_date", "invoice_type")
        before = {f: getattr(invoice, f) for f in fields}
        before["unit_price"] = Decimal(str(before["unit_price"])).quantize(Decimal("0.01"))
        before["total_amount"] = Decimal(str(before["total_amount"])).quantize(Decimal("0.01"))

        miners = before["total_miners"]
        price = before["unit_price"]
        if data.get("total_miners") is not None:
            miners = validate_miners(data["total_miners"])
        if data.get("unit_price") is not None:
            price = validate_unit_price(data["unit_price"])

        after = dict(before)
        after.update(total_miners=miners, unit_price=price, total_amount=compute_total(miners, price))
        if data.get("due_date") is not None:
            if data["due_date"] < invoice.invoice_generated_date:
                self.db.rollback()
                raise InvalidRequestError("Due date cannot be before the invoice date")
            after["due_date"] = data["due_date"]
        if data.get("invoice_type") is not None:
            after["invoice_type"] = data["invoice_type"]

        changes = diff(before, after)
        if not changes:
            self.db.rollback()
            return invoice

        for field, value in after.items():
            setattr(invoice, field, value)
        invoice.updated_by = actor_id
        self.db.commit()
        self.db.refresh(invoice)

        self.audit.record(
            AuditAction.INVOICE_UPDATED, "Invoice", invoice.id,
            f"Invoice {invoice.invoice_number} updated",
            user_id=actor_id, changes=changes,
        )
        return invoice

    # ==================== TRANSITIONS ====================

    def _transition(self, invoice: Invoice, target: InvoiceStatus, actor_id: int = None) -> InvoiceStatus:
        current = invoice.status
        if not can_transition(current, target):
            self.db.rollback()
            raise ConflictError(
                f"Cannot change invoice {invoice.invoice_number} from {current.value} to {target.value}"
            )
        invoice.status = target
        invoice.updated_by = actor_id
        return current

    def issue_invoice(self, invoice_id: int, actor_id: int = None) -> Tuple[Invoice, dict]:
        """
        DRAFT -> ISSUED, then email the customer. The status change is committed
        first; an email failure is reported in the result, not raised.
        """
        invoice = self.get_invoice(invoice_id, lock=True)
        previous = self._transition(invoice, InvoiceStatus.ISSUED, actor_id)
        invoice.issued_date = get_utc_now()
        self.db.commit()
        self.db.refresh(invoice)

        self.audit.record(
            AuditAction.INVOICE_ISSUED, "Invoice", invoice.id,
            f"Invoice {invoice.invoice_number} issued",
            user_id=actor_id,
            changes={"status": {"from": previous, "to": invoice.status},
                     "issued_date": invoice.issued_date},
        )

        email = self.notifier.deliver(invoice, NotificationType.INVOICE_ISSUED, actor_id)
        return invoice, email

    def send_invoice_email(self, invoice_id: int, actor_id: int = None) -> dict:
        invoice = self.get_invoice(invoice_id)
        if invoice.status not in PAYABLE_STATUSES:
            raise ConflictError(
                f"Only issued or overdue invoices can be emailed (status is {invoice.status.value})"
            )
        notification_type = NotificationType.INVOICE_ISSUED
        if effective_status(invoice) == InvoiceStatus.OVERDUE:
            notification_type = NotificationType.OVERDUE_REMINDER
        return self.notifier.deliver(invoice, notification_type, actor_id)

    def cancel_invoice(self, invoice_id: int, actor_id: int = None, reason: str = None) -> Invoice:
        invoice = self.get_invoice(invoice_id, lock=True)
        current = invoice.status
        # A swept OVERDUE invoice is still an unpaid issued invoice
        if current == InvoiceStatus.OVERDUE:
            invoice.status = InvoiceStatus.ISSUED
        try:
            self._transition(invoice, InvoiceStatus.CANCELLED, actor_id)
        except ConflictError:
            raise ConflictError(
                f"Cannot cancel invoice {invoice.invoice_number} with status {current.value}"
            )
        self.db.commit()
        self.db.refresh(invoice)

        description = f"Invoice {invoice.invoice_number} cancelled"
        if reason:
            description += f": {reason}"
        self.audit.record(
            AuditAction.INVOICE_CANCELLED, "Invoice", invoice.id, description,
            user_id=actor_id,
            changes={"status": {"from": current, "to": InvoiceStatus.CANCELLED}},
        )

        if current != InvoiceStatus.DRAFT:
            self.notifier.deliver(invoice, NotificationType.INVOICE_CANCELLED, actor_id)
        return invoice

    def refund_invoice(self, invoice_id: int, actor_id: int = None, reason: str = None) -> Invoice:
        invoice = self.get_invoice(invoice_id, lock=True)
        previous = self._transition(invoice, InvoiceStatus.REFUNDED, actor_id)
        self.db.commit()
        self.db.refresh(invoice)

        description = f"Invoice {invoice.invoice_number} refunded"
        if reason:
            description += f": {reason}"
        self.audit.record(
            AuditAction.INVOICE_REFUNDED, "Invoice", invoice.id, description,
            user_id=actor_id,
            changes={"status": {"from": previous, "to": InvoiceStatus.REFUNDED}},
        )
        return invoice

    def delete_invoice(self, invoice_id: int, actor_id: int = None):
        """Only DRAFT and CANCELLED invoices; linked payments are kept, unlinked."""
        invoice = self.get_invoice(invoice_id, lock=True)
        if invoice.status not in DELETABLE_STATUSES:
            self.db.rollback()
            raise ConflictError(
                f"Only DRAFT or CANCELLED invoices can be deleted (status is {invoice.status.value})"
            )

        number = invoice.invoice_number
        unlinked = [p.id for p in invoice.payments]
        for payment in invoice.payments:
            payment.invoice_id = None
        self.db.delete(invoice)
        self.db.commit()

        self.audit.record(
            AuditAction.INVOICE_DELETED, "Invoice", invoice_id,
            f"Invoice {number} deleted",
            user_id=actor_id,
            changes={"unlinked_payments": unlinked} if unlinked else None,
        )

    def sweep_overdue(self, now: datetime = None, actor_id: int = None) -> int:
        """Materialize ISSUED-past-due as OVERDUE. Running it twice changes nothing."""
        now = now or get_utc_now()
        invoices = self.db.query(Invoice).filter(
            Invoice.status == InvoiceStatus.ISSUED,
            Invoice.due_date < now,
        ).with_for_update().all()

        for invoice in invoices:
            invoice.status = InvoiceStatus.OVERDUE
            invoice.updated_by = actor_id
        self.db.commit()

        for invoice in invoices:
            self.audit.record(
                AuditAction.INVOICE_OVERDUE, "Invoice", invoice.id,
                f"Invoice {invoice.invoice_number} is overdue (due {invoice.due_date.date().isoformat()})",
                user_id=actor_id,
                changes={"status": {"from": InvoiceStatus.ISSUED, "to": InvoiceStatus.OVERDUE}},
            )
        if invoices:
            logger.info(f"Overdue sweep marked {len(invoices)} invoice(s)")
        return len(invoices)


def invoice_to_dict(invoice: Invoice, db: Session = None, now: datetime = None) -> dict:
    now = now or get_utc_now()
    status = effective_status(invoice, now)
    data = {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "user_id": invoice.user_id,
        "customer_email": invoice.user.email if invoice.user else None,
        "customer_name": invoice.user.name if invoice.user else None,
        "invoice_type": invoice.invoice_type.value,
        "total_miners": invoice.total_miners,
        "unit_price": float(invoice.unit_price),
        "total_amount": float(invoice.total_amount),
        "status": invoice.status.value,
        "effective_status": status.value,
        "is_overdue": status == InvoiceStatus.OVERDUE,
        "invoice_generated_date": invoice.invoice_generated_date.isoformat(),
        "issued_date": invoice.issued_date.isoformat() if invoice.issued_date else None,
        "due_date": invoice.due_date.isoformat(),
        "paid_date": invoice.paid_date.isoformat() if invoice.paid_date else None,
        "created_by": invoice.created_by,
        "updated_by": invoice.updated_by,
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }
    if db is not None:
        paid = total_paid(db, invoice.id)
        data["total_paid"] = float(paid)
        data["balance_due"] = float(Decimal(str(invoice.total_amount)) - paid)
    return data
