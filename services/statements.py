"""
Customer statements: invoices over a period with paid/pending totals and
aging, plus an Excel export.
"""

import io
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, Border, Side, PatternFill
from sqlalchemy.orm import Session

from core.exceptions import InvalidRequestError, NotFoundError
from database.base import get_utc_now, to_naive_utc
from database.models import User, Invoice, InvoiceStatus
from .invoice import effective_status, total_paid


AGING_BUCKETS = OrderedDict([
    ("CURRENT", "Current"),
    ("THIRTY_PLUS", "1-30 Days"),
    ("SIXTY_PLUS", "31-60 Days"),
    ("NINETY_PLUS", "60+ Days"),
])

SETTLED = (InvoiceStatus.PAID, InvoiceStatus.REFUNDED)


def aging_bucket(days_overdue: int) -> str:
    if days_overdue <= 0:
        return "CURRENT"
    if days_overdue <= 30:
        return "THIRTY_PLUS"
    if days_overdue <= 60:
        return "SIXTY_PLUS"
    return "NINETY_PLUS"


def days_overdue(invoice: Invoice, now: datetime) -> int:
    if invoice.status in SETTLED or invoice.status == InvoiceStatus.DRAFT:
        return 0
    return max((now - invoice.due_date).days, 0)


class StatementService:
    def __init__(self, db: Session):
        self.db = db

    def build(self, customer_id: int, from_date: datetime = None, to_date: datetime = None,
              now: datetime = None) -> dict:
        from_date, to_date = to_naive_utc(from_date), to_naive_utc(to_date)
        if from_date and to_date and from_date > to_date:
            raise InvalidRequestError("from_date must not be after to_date")

        customer = self.db.query(User).filter(User.id == customer_id).first()
        if not customer:
            raise NotFoundError("Customer not found")

        now = now or get_utc_now()
        query = self.db.query(Invoice).filter(
            Invoice.user_id == customer_id,
            Invoice.status != InvoiceStatus.CANCELLED,
        )
        if from_date:
            query = query.filter(Invoice.invoice_generated_date >= from_date)
        if to_date:
            query = query.filter(Invoice.invoice_generated_date <= to_date)
        invoices = query.order_by(Invoice.invoice_generated_date, Invoice.id).all()

        by_status = {s.value: 0 for s in InvoiceStatus if s != InvoiceStatus.CANCELLED}
        aging = {key: Decimal("0.00") for key in AGING_BUCKETS}
        total_amount = Decimal("0.00")
        paid_total = Decimal("0.00")
        pending = Decimal("0.00")
        rows = []

        for inv in invoices:
            amount = Decimal(str(inv.total_amount))
            paid = total_paid(self.db, inv.id)
            balance = amount - paid
            status = effective_status(inv, now)
            overdue_days = days_overdue(inv, now)
            bucket = aging_bucket(overdue_days)

            by_status[status.value] += 1
            total_amount += amount
            paid_total += paid
            if inv.status not in SETTLED and balance > 0:
                pending += balance
                aging[bucket] += balance

            rows.append({
                "id": inv.id,
                "invoice_number": inv.invoice_number,
                "invoice_date": inv.invoice_generated_date.isoformat(),
                "issued_date": inv.issued_date.isoformat() if inv.issued_date else None,
                "due_date": inv.due_date.isoformat(),
                "paid_date": inv.paid_date.isoformat() if inv.paid_date else None,
                "total_amount": float(amount),
                "paid_amount": float(paid),
                "balance": float(balance),
                "status": status.value,
                "days_overdue": overdue_days,
                "aging_bucket": bucket,
            })

        return {
            "period": {
                "from": from_date.isoformat() if from_date else "All time",
                "to": to_date.isoformat() if to_date else "Present",
            },
            "customer": {"id": customer.id, "email": customer.email, "name": customer.name},
            "stats": {
                "total_invoices": len(invoices),
                "total_amount": float(total_amount),
                "total_paid": float(paid_total),
                "total_pending": float(pending),
                "invoices_by_status": by_status,
                "aging": {key: float(value) for key, value in aging.items()},
            },
            "invoices": rows,
            "generated_at": now.isoformat(),
        }


class StatementExcelGenerator:
    """Statement workbook: summary sheet plus one row per invoice."""

    HEADER_FONT = Font(bold=True, color="FFFFFF", size=11)
    HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    TITLE_FONT = Font(bold=True, size=12)
    BOLD_FONT = Font(bold=True, size=11)
    BORDER = Border(
        left=Side(style='thin'), right=Side(style='thin'),
        top=Side(style='thin'), bottom=Side(style='thin')
    )
    SUCCESS_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
    WARNING_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
    CENTER = Alignment(horizontal='center', vertical='center')
    RIGHT = Alignment(horizontal='right', vertical='center')
    MONEY = '#,##0.00'

    def _save(self, wb: Workbook) -> bytes:
        buf = io.BytesIO()
        wb.save(buf)
        buf.seek(0)
        return buf.getvalue()

    def _header_row(self, ws, row: int, headers):
        for c, h in enumerate(headers, 1):
            cell = ws.cell(row=row, column=c, value=h)
            cell.font = self.HEADER_FONT
            cell.fill = self.HEADER_FILL
            cell.border = self.BORDER
            cell.alignment = self.CENTER

    def generate(self, statement: dict) -> bytes:
        wb = Workbook()
        customer = statement["customer"]
        stats = statement["stats"]

        # Sheet 1: Summary
        ws = wb.active
        ws.title = "Summary"
        ws['A1'] = f"STATEMENT: {customer['name'] or customer['email']}"
        ws['A1'].font = Font(bold=True, size=14)
        ws['A2'] = f"Period: {statement['period']['from']} to {statement['period']['to']}"

        self._header_row(ws, 4, ["Item", "Value"])
        summary = [
            ("Invoices", stats["total_invoices"]),
            ("Total invoiced", stats["total_amount"]),
            ("Total paid", stats["total_paid"]),
            ("Pending", stats["total_pending"]),
        ]
        for key, label in AGING_BUCKETS.items():
            summary.append((f"Aging: {label}", stats["aging"][key]))

        row = 5
        for label, value in summary:
            ws.cell(row=row, column=1, value=label).border = self.BORDER
            c = ws.cell(row=row, column=2, value=value)
            c.border = self.BORDER
            if isinstance(value, float):
                c.number_format = self.MONEY
            if label == "Pending" and value > 0:
                c.fill = self.WARNING_FILL
            row += 1
        ws.column_dimensions['A'].width = 24
        ws.column_dimensions['B'].width = 18

        # Sheet 2: Invoices
        ws = wb.create_sheet("Invoices")
        headers = ["Invoice #", "Date", "Due", "Amount", "Paid", "Balance", "Status", "Days overdue"]
        self._header_row(ws, 1, headers)
        row = 1
        for inv in statement["invoices"]:
            row += 1
            values = [
                inv["invoice_number"], inv["invoice_date"][:10], inv["due_date"][:10],
                inv["total_amount"], inv["paid_amount"], inv["balance"],
                inv["status"], inv["days_overdue"],
            ]
            for col, value in enumerate(values, 1):
                c = ws.cell(row=row, column=col, value=value)
                c.border = self.BORDER
                if col in (4, 5, 6):
                    c.number_format = self.MONEY
            status_cell = ws.cell(row=row, column=7)
            status_cell.fill = self.SUCCESS_FILL if inv["status"] == "PAID" else (
                self.WARNING_FILL if inv["status"] == "OVERDUE" else PatternFill()
            )

        row += 2
        ws.cell(row=row, column=3, value="TOTAL:").font = self.TITLE_FONT
        ws.cell(row=row, column=3).alignment = self.RIGHT
        for col, key in ((4, "total_amount"), (5, "total_paid"), (6, "total_pending")):
            c = ws.cell(row=row, column=col, value=stats[key])
            c.font = self.BOLD_FONT
            c.number_format = self.MONEY
            c.border = self.BORDER

        for col, width in zip("ABCDEFGH", (14, 12, 12, 14, 14, 14, 12, 14)):
            ws.column_dimensions[col].width = width

        return self._save(wb)


def statement_filename(statement: dict, generated: Optional[datetime] = None) -> str:
    generated = generated or get_utc_now()
    return f"statement_{statement['customer']['id']}_{generated.strftime('%Y%m%d')}.xlsx"
