"""
Pricing models: per-customer time-ranged unit prices and the system default.
"""

from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime,
    ForeignKey, Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship

from ..base import BaseModel


DEFAULT_PRICING_KEY = 'default'


class PricingDefault(BaseModel):
    """
    System-wide fallback pricing. Exactly one row, keyed by DEFAULT_PRICING_KEY,
    created by the ensure-default seed step (never lazily on read).
    """

    __tablename__ = 'pricing_defaults'

    key = Column(String(50), unique=True, nullable=False, default=DEFAULT_PRICING_KEY)
    unit_price = Column(Numeric(10, 2), nullable=False)
    due_days = Column(Integer, nullable=False, default=30)


class CustomerPricingConfig(BaseModel):
    """
    Unit price for one customer over the half-open interval
    [effective_from, effective_to). effective_to NULL means open-ended.
    """

    __tablename__ = 'customer_pricing_configs'

    user_id = Column(Integer, ForeignKey('users.id', ondelete='RESTRICT'), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    effective_from = Column(DateTime, nullable=False)
    effective_to = Column(DateTime, nullable=True)

    created_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    updated_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint('user_id', 'effective_from', name='uq_pricing_user_effective_from'),
        # At most one open config per customer
        Index(
            'uq_pricing_open_per_user', 'user_id', unique=True,
            postgresql_where=text('effective_to IS NULL'),
            sqlite_where=text('effective_to IS NULL'),
        ),
        Index('ix_pricing_user_id', 'user_id'),
        Index('ix_pricing_effective_from', 'effective_from'),
    )

    @property
    def is_open(self) -> bool:
        return self.effective_to is None

    def covers(self, at) -> bool:
        """True if `at` falls inside [effective_from, effective_to)."""
        if at < self.effective_from:
            return False
        return self.effective_to is None or at < self.effective_to
