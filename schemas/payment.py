"""
Payment (cost ledger) schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, field_validator

from database.base import to_naive_utc
from database.models import PaymentType


class PaymentCreate(BaseModel):
    user_id: int
    amount: Decimal
    type: PaymentType = PaymentType.PAYMENT
    consumption: Optional[float] = None
    narration: Optional[str] = None
    payment_date: Optional[datetime] = None
    invoice_id: Optional[int] = None

    @field_validator("payment_date")
    @classmethod
    def normalize_payment_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class PaymentLinkRequest(BaseModel):
    invoice_id: int
    paid_date: Optional[datetime] = None

    @field_validator("paid_date")
    @classmethod
    def normalize_paid_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)
