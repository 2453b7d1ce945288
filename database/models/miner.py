"""
Hosted miner model. Active miner count drives invoice totals.
"""

from enum import Enum as PyEnum
from sqlalchemy import Column, String, Integer, ForeignKey, Enum, Index
from sqlalchemy.orm import relationship

from ..base import BaseModel, SoftDeleteMixin


class MinerStatus(PyEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Miner(BaseModel, SoftDeleteMixin):
    """A machine hosted for a customer."""

    __tablename__ = 'miners'

    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(200), nullable=False)
    model = Column(String(200), nullable=True)  # e.g. "Antminer S21 Pro"
    status = Column(Enum(MinerStatus, name='miner_status'), default=MinerStatus.ACTIVE, nullable=False)

    user = relationship("User", back_populates="miners")

    __table_args__ = (
        Index('ix_miners_user_status', 'user_id', 'status'),
    )
