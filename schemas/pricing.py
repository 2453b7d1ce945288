"""
Pricing config schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, field_validator

from database.base import to_naive_utc


class PricingConfigCreate(BaseModel):
    user_id: int
    unit_price: Decimal
    effective_from: datetime
    effective_to: Optional[datetime] = None

    @field_validator("effective_from", "effective_to")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class PricingConfigUpdate(BaseModel):
    """effective_to may be set to null explicitly to reopen a config."""

    unit_price: Optional[Decimal] = None
    effective_to: Optional[datetime] = None

    @field_validator("effective_to")
    @classmethod
    def normalize_effective_to(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)
