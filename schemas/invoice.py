"""
Invoice schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, field_validator

from database.base import to_naive_utc
from database.models import InvoiceType


class InvoiceCreate(BaseModel):
    """
    unit_price and total_miners are optional: when omitted they are taken
    from the customer's pricing config and live miner count.
    """

    user_id: int
    invoice_type: InvoiceType = InvoiceType.ELECTRICITY_CHARGES
    total_miners: Optional[int] = None
    unit_price: Optional[Decimal] = None
    invoice_generated_date: Optional[datetime] = None
    due_date: Optional[datetime] = None

    @field_validator("invoice_generated_date", "due_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class InvoiceUpdate(BaseModel):
    total_miners: Optional[int] = None
    unit_price: Optional[Decimal] = None
    due_date: Optional[datetime] = None
    invoice_type: Optional[InvoiceType] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class RecordPaymentRequest(BaseModel):
    amount: Decimal
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("payment_date")
    @classmethod
    def normalize_payment_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class InvoiceActionRequest(BaseModel):
    reason: Optional[str] = None


class BulkEmailRequest(BaseModel):
    invoice_ids: List[int]

    @field_validator("invoice_ids")
    @classmethod
    def validate_invoice_ids(cls, v: List[int]) -> List[int]:
        ids = list(dict.fromkeys(v))
        if not ids:
            raise ValueError("At least one invoice is required")
        if len(ids) > 100:
            raise ValueError("At most 100 invoices per run")
        return ids


class ResendRequest(BaseModel):
    result_ids: List[int]

    @field_validator("result_ids")
    @classmethod
    def validate_result_ids(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("At least one result is required")
        return list(dict.fromkeys(v))
