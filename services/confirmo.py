"""
Confirmo crypto payment gateway: payment links for invoices and webhook handling.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import (
    BillingError, CollaboratorError, ConflictError, InvalidRequestError, NotFoundError,
)
from database.base import get_utc_now
from database.models import (
    Invoice, InvoiceStatus, CostPayment, PaymentType,
    ConfirmoPayment, ConfirmoPaymentStatus, NotificationType, AuditAction,
)
from .audit import AuditRecorder
from .invoice import PAYABLE_STATUSES
from .notifications import NotificationDispatcher


logger = logging.getLogger(__name__)

STATUS_MAP = {
    "pending": ConfirmoPaymentStatus.PENDING,
    "prepared": ConfirmoPaymentStatus.PENDING,
    "active": ConfirmoPaymentStatus.PENDING,
    "processing": ConfirmoPaymentStatus.PROCESSING,
    "confirming": ConfirmoPaymentStatus.PROCESSING,
    "confirmed": ConfirmoPaymentStatus.CONFIRMED,
    "paid": ConfirmoPaymentStatus.CONFIRMED,
    "completed": ConfirmoPaymentStatus.COMPLETED,
    "expired": ConfirmoPaymentStatus.EXPIRED,
    "cancelled": ConfirmoPaymentStatus.CANCELLED,
    "canceled": ConfirmoPaymentStatus.CANCELLED,
    "failed": ConfirmoPaymentStatus.FAILED,
    "error": ConfirmoPaymentStatus.FAILED,
}

SETTLED_STATUSES = (ConfirmoPaymentStatus.CONFIRMED, ConfirmoPaymentStatus.COMPLETED)


def map_status(raw: Optional[str]) -> ConfirmoPaymentStatus:
    """Gateway status string to ours; anything unknown stays PENDING."""
    return STATUS_MAP.get((raw or "").strip().lower(), ConfirmoPaymentStatus.PENDING)


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """HMAC-SHA256 of the raw body, hex encoded, compared in constant time."""
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature.strip().lower())


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        # epoch seconds or milliseconds
        if value > 1e12:
            value = value / 1000
        return datetime.fromtimestamp(value, timezone.utc).replace(tzinfo=None)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class ConfirmoClient:
    """Synchronous Confirmo REST client."""

    def __init__(self, api_key: str = None, base_url: str = None, timeout: float = 30.0):
        self.api_key = api_key or settings.CONFIRMO_API_KEY
        self.base_url = (base_url or settings.CONFIRMO_BASE_URL).rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, json: dict = None) -> dict:
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
            ) as client:
                response = client.request(method, path, json=json)
        except httpx.HTTPError as e:
            logger.error(f"Confirmo {method} {path} failed: {e}")
            raise CollaboratorError("Crypto payment gateway unavailable")

        if response.status_code >= 400:
            try:
                body = response.json()
                message = body.get("message") or body.get("error") or response.text
            except ValueError:
                message = response.text
            logger.error(f"Confirmo {method} {path} returned {response.status_code}: {message}")
            raise CollaboratorError(f"Confirmo error: {message}")
        return response.json()

    def create_invoice(self, payload: dict) -> dict:
        return self._request("POST", "/invoices", json=payload)

    def get_invoice(self, confirmo_invoice_id: str) -> dict:
        return self._request("GET", f"/invoices/{confirmo_invoice_id}")


def get_confirmo_client() -> Optional[ConfirmoClient]:
    """FastAPI dependency. None when no API key is configured."""
    if not settings.confirmo_enabled:
        return None
    return ConfirmoClient()


class ConfirmoPaymentService:
    def __init__(self, db: Session, client: Optional[ConfirmoClient] = None,
                 mailer=None, audit: AuditRecorder = None):
        self.db = db
        self.client = client
        self.audit = audit or AuditRecorder(db)
        self.notifier = NotificationDispatcher(db, mailer, self.audit)

    def create_payment_for_invoice(self, invoice_id: int, actor_id: int = None) -> ConfirmoPayment:
        """Payment link for an unpaid invoice. A pending, unexpired link is reused."""
        if self.client is None:
            raise BillingError("Crypto payments are not enabled")

        invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        if invoice.status not in PAYABLE_STATUSES:
            raise ConflictError(
                f"Invoice {invoice.invoice_number} cannot be paid (status is {invoice.status.value})"
            )

        now = get_utc_now()
        existing = invoice.confirmo_payment
        if existing:
            reusable = (
                existing.status == ConfirmoPaymentStatus.PENDING
                and (existing.expires_at is None or existing.expires_at > now)
            )
            if reusable:
                return existing
            if existing.status in SETTLED_STATUSES:
                raise ConflictError("Invoice already has a confirmed crypto payment")
            # delete-orphan removes the stale link on flush
            invoice.confirmo_payment = None
            self.db.flush()

        customer = invoice.user
        payload = {
            "invoice": {"amount": str(invoice.total_amount), "currencyFrom": "USD"},
            "settlement": {"currency": settings.CONFIRMO_SETTLEMENT_CURRENCY},
            "product": {
                "name": f"{settings.APP_NAME} Invoice {invoice.invoice_number}",
                "description": (
                    f"Electricity charges for {invoice.total_miners} miners "
                    f"@ ${invoice.unit_price}/miner"
                ),
            },
            "customerEmail": customer.email,
            "reference": invoice.invoice_number,
            "returnUrl": f"{settings.APP_URL}/invoices/{invoice.id}/payment-success",
            "notifyUrl": f"{settings.APP_URL}/api/v1/webhooks/confirmo",
        }
        try:
            data = self.client.create_invoice(payload)
        except CollaboratorError:
            self.db.rollback()
            raise
        if not data.get("id") or not data.get("url"):
            self.db.rollback()
            raise CollaboratorError("Confirmo response is missing the invoice id or payment url")

        payment = ConfirmoPayment(
            invoice_id=invoice.id,
            confirmo_invoice_id=str(data["id"]),
            payment_url=data["url"],
            amount=invoice.total_amount,
            currency="USD",
            settlement_currency=settings.CONFIRMO_SETTLEMENT_CURRENCY,
            status=map_status(data.get("status")),
            customer_email=customer.email,
            reference=invoice.invoice_number,
            expires_at=_parse_datetime(data.get("expiresAt")),
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"Crypto payment link created for invoice {invoice.invoice_number}")
        return payment

    def payment_url_for(self, invoice: Invoice) -> Optional[str]:
        """Link to embed in invoice emails; gateway failures just leave it out."""
        if self.client is None:
            return None
        try:
            return self.create_payment_for_invoice(invoice.id).payment_url
        except BillingError as e:
            logger.warning(f"No crypto link for invoice {invoice.invoice_number}: {e.message}")
            return None

    def handle_webhook(self, payload: dict) -> ConfirmoPayment:
        """
        Apply a gateway status update. On confirmation of an unpaid invoice a
        PAYMENT for the invoice total is created, linked and the invoice marked
        PAID, all in one commit. Replayed webhooks do not pay twice.
        """
        confirmo_id = str(payload.get("id") or "")
        payment = self.db.query(ConfirmoPayment).filter(
            ConfirmoPayment.confirmo_invoice_id == confirmo_id
        ).with_for_update().first()
        if not payment:
            raise NotFoundError("Crypto payment not found")

        previous_status = payment.status
        payment.status = map_status(payload.get("status"))
        if payload.get("paid_amount") is not None:
            try:
                paid_amount = Decimal(str(payload["paid_amount"]))
            except InvalidOperation:
                paid_amount = None
            if paid_amount is None or not paid_amount.is_finite():
                self.db.rollback()
                raise InvalidRequestError(f"Invalid paid_amount: {payload['paid_amount']!r}")
            payment.paid_amount = paid_amount
        if payload.get("paid_currency"):
            payment.paid_currency = payload["paid_currency"]
        if payload.get("tx_hash"):
            payment.transaction_hash = payload["tx_hash"]

        invoice = self.db.query(Invoice).filter(
            Invoice.id == payment.invoice_id
        ).with_for_update().first()

        ledger = None
        invoice_previous = None
        if payment.status in SETTLED_STATUSES and invoice.status in PAYABLE_STATUSES:
            now = get_utc_now()
            payment.confirmed_at = payment.confirmed_at or now
            ledger = CostPayment(
                user_id=invoice.user_id,
                invoice_id=invoice.id,
                amount=invoice.total_amount,
                type=PaymentType.PAYMENT,
                narration=f"Crypto payment via Confirmo ({confirmo_id})",
                payment_date=now,
            )
            self.db.add(ledger)
            invoice_previous = invoice.status
            invoice.status = InvoiceStatus.PAID
            invoice.paid_date = now

        self.db.commit()
        self.db.refresh(payment)

        logger.info(
            f"Confirmo webhook {confirmo_id}: {previous_status.value} -> {payment.status.value}"
        )
        if ledger is not None:
            self.audit.record(
                AuditAction.PAYMENT_ADDED, "Invoice", invoice.id,
                f"Crypto payment of {ledger.amount} applied to invoice {invoice.invoice_number}",
                changes={"payment_id": ledger.id, "confirmo_invoice_id": confirmo_id},
            )
            self.audit.record(
                AuditAction.INVOICE_PAID, "Invoice", invoice.id,
                f"Invoice {invoice.invoice_number} paid via crypto",
                changes={"status": {"from": invoice_previous, "to": InvoiceStatus.PAID},
                         "paid_date": invoice.paid_date},
            )
            self.notifier.deliver(invoice, NotificationType.PAYMENT_RECEIVED)
        return payment


def confirmo_payment_to_dict(payment: ConfirmoPayment) -> dict:
    return {
        "id": payment.id,
        "invoice_id": payment.invoice_id,
        "confirmo_invoice_id": payment.confirmo_invoice_id,
        "payment_url": payment.payment_url,
        "amount": float(payment.amount),
        "currency": payment.currency,
        "settlement_currency": payment.settlement_currency,
        "status": payment.status.value,
        "paid_amount": float(payment.paid_amount) if payment.paid_amount is not None else None,
        "paid_currency": payment.paid_currency,
        "transaction_hash": payment.transaction_hash,
        "expires_at": payment.expires_at.isoformat() if payment.expires_at else None,
        "confirmed_at": payment.confirmed_at.isoformat() if payment.confirmed_at else None,
    }
