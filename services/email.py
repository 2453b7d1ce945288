"""
Outgoing invoice email over SMTP.
"""

import logging
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Iterable

from core.config import settings
from core.exceptions import CollaboratorError
from database.models import Invoice, User


logger = logging.getLogger(__name__)


def build_cc_list(customer: User) -> List[str]:
    """Customer's group email (relationship manager) plus the invoices mailbox."""
    cc = []
    if customer.group and customer.group.email:
        cc.append(customer.group.email)
    if settings.INVOICE_CC_EMAIL and settings.INVOICE_CC_EMAIL not in cc:
        cc.append(settings.INVOICE_CC_EMAIL)
    return cc


class EmailService:
    """Thin SMTP sender. Raises CollaboratorError when delivery fails."""

    def __init__(self, host: str = None, port: int = None, user: str = None,
                 password: str = None, sender: str = None):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.user = user if user is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.sender = sender or settings.SMTP_FROM

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def send(
        self,
        to: str,
        subject: str,
        text_body: str,
        html_body: str = None,
        cc: Iterable[str] = (),
        attachments: Iterable[tuple] = (),
    ):
        """attachments: (filename, bytes, subtype) tuples."""
        if not self.configured:
            raise CollaboratorError("SMTP is not configured")

        cc = list(cc)
        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        if cc:
            msg["Cc"] = ", ".join(cc)

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(text_body, "plain"))
        if html_body:
            body.attach(MIMEText(html_body, "html"))
        msg.attach(body)

        for filename, content, subtype in attachments:
            part = MIMEApplication(content, _subtype=subtype)
            part.add_header("Content-Disposition", "attachment", filename=filename)
            msg.attach(part)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                server.starttls()
                if self.user:
                    server.login(self.user, self.password)
                server.sendmail(self.sender, [to] + cc, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send to {to} failed: {e}")
            raise CollaboratorError("Email transmission failed")

    # ==================== INVOICE EMAILS ====================

    def send_invoice(self, invoice: Invoice, pdf: bytes, cc: List[str],
                     crypto_payment_url: Optional[str] = None):
        customer = invoice.user
        name = customer.name or customer.email
        lines = [
            f"Dear {name},",
            "",
            f"Please find attached invoice {invoice.invoice_number} "
            f"for ${invoice.total_amount:,.2f}.",
            f"Miners: {invoice.total_miners} x ${invoice.unit_price:,.2f}",
            f"Due date: {invoice.due_date.strftime('%Y-%m-%d')}",
        ]
        if crypto_payment_url:
            lines += ["", f"Pay with crypto: {crypto_payment_url}"]
        lines += ["", f"View online: {settings.APP_URL}/invoices/{invoice.id}"]

        self.send(
            to=customer.email,
            subject=f"Invoice {invoice.invoice_number} from {settings.APP_NAME}",
            text_body="\n".join(lines),
            cc=cc,
            attachments=[(f"invoice-{invoice.invoice_number}.pdf", pdf, "pdf")],
        )

    def send_cancellation(self, invoice: Invoice, cc: List[str]):
        customer = invoice.user
        self.send(
            to=customer.email,
            subject=f"Invoice {invoice.invoice_number} cancelled",
            text_body=(
                f"Dear {customer.name or customer.email},\n\n"
                f"Invoice {invoice.invoice_number} for ${invoice.total_amount:,.2f} "
                "has been cancelled. No payment is required."
            ),
            cc=cc,
        )

    def send_payment_received(self, invoice: Invoice, cc: List[str]):
        customer = invoice.user
        self.send(
            to=customer.email,
            subject=f"Payment received for invoice {invoice.invoice_number}",
            text_body=(
                f"Dear {customer.name or customer.email},\n\n"
                f"We have received full payment for invoice {invoice.invoice_number}. Thank you."
            ),
            cc=cc,
        )


def get_email_service() -> EmailService:
    """FastAPI dependency; tests override it with a fake."""
    return EmailService()
