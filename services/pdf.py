"""
Invoice PDF rendering (reportlab).
"""

import io
from decimal import Decimal
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT, TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import (
    SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, HRFlowable,
)

from core.config import settings
from database.models import Invoice, InvoiceType


PRIMARY = colors.HexColor("#1565C0")
MUTED = colors.HexColor("#6B7280")
BORDER = colors.HexColor("#E5E7EB")


def _money(value) -> str:
    return f"${Decimal(value):,.2f}"


def _date(value) -> str:
    return value.strftime("%B %d, %Y") if value else "-"


class InvoicePDFRenderer:
    """Renders one invoice to PDF bytes."""

    def __init__(self):
        base = getSampleStyleSheet()
        self.styles = {
            "brand": ParagraphStyle(
                "Brand", parent=base["Normal"], fontSize=16,
                fontName="Helvetica-Bold", textColor=PRIMARY,
            ),
            "title": ParagraphStyle(
                "Title", parent=base["Normal"], fontSize=22,
                fontName="Helvetica-Bold", alignment=TA_RIGHT,
            ),
            "label": ParagraphStyle(
                "Label", parent=base["Normal"], fontSize=7.5,
                fontName="Helvetica-Bold", textColor=MUTED,
            ),
            "value": ParagraphStyle(
                "Value", parent=base["Normal"], fontSize=9.5, spaceAfter=6,
            ),
            "body": ParagraphStyle(
                "Body", parent=base["Normal"], fontSize=9, leading=13,
            ),
            "right": ParagraphStyle(
                "Right", parent=base["Normal"], fontSize=9, alignment=TA_RIGHT,
            ),
            "total": ParagraphStyle(
                "Total", parent=base["Normal"], fontSize=13,
                fontName="Helvetica-Bold", textColor=PRIMARY, alignment=TA_RIGHT,
            ),
            "footer": ParagraphStyle(
                "Footer", parent=base["Normal"], fontSize=7.5,
                textColor=MUTED, alignment=TA_CENTER,
            ),
        }

    def render(self, invoice: Invoice, crypto_payment_url: Optional[str] = None) -> bytes:
        buf = io.BytesIO()
        doc = SimpleDocTemplate(
            buf, pagesize=A4,
            topMargin=0.5 * inch, bottomMargin=0.75 * inch,
            leftMargin=0.7 * inch, rightMargin=0.7 * inch,
            title=f"Invoice {invoice.invoice_number}",
        )
        s = self.styles
        story = []

        header = Table(
            [[Paragraph(settings.APP_NAME, s["brand"]), Paragraph("INVOICE", s["title"])]],
            colWidths=[3.5 * inch, 3.3 * inch],
        )
        header.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
        story.extend([header, Spacer(1, 6), HRFlowable(width="100%", thickness=2, color=PRIMARY)])
        story.append(Spacer(1, 16))

        customer = invoice.user
        bill_to = [
            Paragraph("BILL TO", s["label"]),
            Paragraph(customer.name or customer.email, s["value"]),
            Paragraph(customer.email, s["value"]),
        ]
        meta = [
            Paragraph("INVOICE NUMBER", s["label"]),
            Paragraph(invoice.invoice_number, s["value"]),
            Paragraph("ISSUE DATE", s["label"]),
            Paragraph(_date(invoice.issued_date or invoice.invoice_generated_date), s["value"]),
            Paragraph("DUE DATE", s["label"]),
            Paragraph(_date(invoice.due_date), s["value"]),
        ]
        meta_table = Table([[bill_to, meta]], colWidths=[3.5 * inch, 3.3 * inch])
        meta_table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
        story.extend([meta_table, Spacer(1, 20)])

        if invoice.invoice_type == InvoiceType.HARDWARE_PURCHASE:
            description = "Hardware purchase"
        else:
            description = "Hosting and electricity charges"

        rows = [
            ["Description", "Miners", "Unit price", "Amount"],
            [
                Paragraph(description, s["body"]),
                str(invoice.total_miners),
                _money(invoice.unit_price),
                _money(invoice.total_amount),
            ],
        ]
        items = Table(rows, colWidths=[3.2 * inch, 0.9 * inch, 1.3 * inch, 1.4 * inch])
        items.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), PRIMARY),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
            ("TOPPADDING", (0, 0), (-1, -1), 6),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ("LINEBELOW", (0, -1), (-1, -1), 0.5, BORDER),
        ]))
        story.extend([items, Spacer(1, 12)])

        totals = Table(
            [[Paragraph("Total Due", s["right"]), Paragraph(_money(invoice.total_amount), s["total"])]],
            colWidths=[5.0 * inch, 1.8 * inch],
        )
        totals.setStyle(TableStyle([("LINEABOVE", (1, 0), (1, 0), 1.5, PRIMARY)]))
        story.extend([totals, Spacer(1, 20)])

        story.append(Paragraph(
            f"Payment is due by {_date(invoice.due_date)}. "
            f"Please quote invoice number {invoice.invoice_number} with your payment.",
            s["body"],
        ))
        if crypto_payment_url:
            story.append(Spacer(1, 8))
            story.append(Paragraph(
                f'Pay with crypto: <link href="{crypto_payment_url}" color="blue">{crypto_payment_url}</link>',
                s["body"],
            ))

        story.extend([Spacer(1, 24), Paragraph("Thank you for your business.", s["footer"])])
        doc.build(story)
        return buf.getvalue()


def render_invoice_pdf(invoice: Invoice, crypto_payment_url: Optional[str] = None) -> bytes:
    return InvoicePDFRenderer().render(invoice, crypto_payment_url)
