"""
Customer, group and miner schemas.
"""

from typing import Optional
from pydantic import BaseModel, field_validator

from database.models import RoleType, MinerStatus


class CustomerCreate(BaseModel):
    """Create a customer (or an admin account)."""

    email: str
    name: Optional[str] = None
    password: str
    role: RoleType = RoleType.CLIENT
    luxor_subaccount_name: Optional[str] = None
    group_id: Optional[int] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email address")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        return v


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    luxor_subaccount_name: Optional[str] = None
    group_id: Optional[int] = None
    is_active: Optional[bool] = None


class GroupCreate(BaseModel):
    name: str
    relationship_manager: Optional[str] = None
    email: Optional[str] = None


class MinerCreate(BaseModel):
    user_id: int
    name: str
    model: Optional[str] = None
    status: MinerStatus = MinerStatus.ACTIVE


class MinerUpdate(BaseModel):
    name: Optional[str] = None
    model: Optional[str] = None
    status: Optional[MinerStatus] = None
