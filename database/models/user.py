"""
User (customer / administrator) and customer group models.
Role-based access: admin tiers manage billing, clients see their own data.
"""

from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, Integer, Boolean,
    ForeignKey, Enum, Index
)
from sqlalchemy.orm import relationship

from ..base import BaseModel, SoftDeleteMixin


class RoleType(PyEnum):
    """Predefined role types."""
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    CLIENT = "CLIENT"


ADMIN_ROLES = (RoleType.SUPER_ADMIN, RoleType.ADMIN)


class Group(BaseModel):
    """
    Customer group with a relationship manager.
    The group email is CC'd on invoice emails of its members.
    """

    __tablename__ = 'groups'

    name = Column(String(200), unique=True, nullable=False)
    relationship_manager = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True)

    members = relationship("User", back_populates="group", lazy="dynamic")


class User(BaseModel, SoftDeleteMixin):
    """
    Hosting customer or administrator.
    Customers are soft-deleted (flagged, never removed).
    """

    __tablename__ = 'users'

    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(RoleType, name='role_type'), default=RoleType.CLIENT, nullable=False)

    # Allocation on the external mining pool
    luxor_subaccount_name = Column(String(200), nullable=True, index=True)
    group_id = Column(Integer, ForeignKey('groups.id', ondelete='SET NULL'), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    group = relationship("Group", back_populates="members")
    miners = relationship("Miner", back_populates="user", lazy="dynamic")

    __table_args__ = (
        Index('ix_users_role', 'role'),
        Index('ix_users_active_deleted', 'is_active', 'is_deleted'),
    )

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"
