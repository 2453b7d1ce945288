"""
Customer, group and hosted-miner management.
"""

from typing import Optional, List, Tuple

from sqlalchemy import or_, func
from sqlalchemy.orm import Session

from core.exceptions import InvalidRequestError, NotFoundError, ConflictError
from core.security import get_password_hash
from database.base import get_utc_now
from database.models import (
    User, Group, Miner, MinerStatus, RoleType, AuditAction,
)
from .audit import AuditRecorder, diff


class CustomerService:
    def __init__(self, db: Session, audit: AuditRecorder = None):
        self.db = db
        self.audit = audit or AuditRecorder(db)

    def list_customers(
        self, search: str = None, role: RoleType = None,
        include_deleted: bool = False, skip: int = 0, limit: int = 100,
    ) -> Tuple[List[User], int]:
        query = self.db.query(User)
        if not include_deleted:
            query = query.filter(User.is_deleted == False)
        if role:
            query = query.filter(User.role == role)
        if search:
            query = query.filter(or_(
                User.email.ilike(f"%{search}%"),
                User.name.ilike(f"%{search}%"),
                User.luxor_subaccount_name.ilike(f"%{search}%"),
            ))
        total = query.count()
        users = query.order_by(User.id).offset(skip).limit(limit).all()
        return users, total

    def get_customer(self, customer_id: int) -> User:
        user = self.db.query(User).filter(
            User.id == customer_id,
            User.is_deleted == False
        ).first()
        if not user:
            raise NotFoundError("Customer not found")
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(
            func.lower(User.email) == email.strip().lower(),
            User.is_deleted == False
        ).first()

    def _check_group(self, group_id: Optional[int]):
        if group_id is not None and not self.db.query(Group).filter(Group.id == group_id).first():
            raise NotFoundError("Group not found")

    def create_customer(self, data: dict, actor_id: int = None) -> User:
        email = data["email"].strip().lower()
        if self.db.query(User).filter(func.lower(User.email) == email).first():
            raise ConflictError("A user with this email already exists")
        self._check_group(data.get("group_id"))

        user = User(
            email=email,
            name=data.get("name"),
            password_hash=get_password_hash(data["password"]),
            role=data.get("role") or RoleType.CLIENT,
            luxor_subaccount_name=data.get("luxor_subaccount_name"),
            group_id=data.get("group_id"),
            is_active=True,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

        self.audit.record(
            AuditAction.CUSTOMER_CREATED, "User", user.id,
            f"Customer {user.email} created",
            user_id=actor_id,
            changes={"role": user.role, "luxor_subaccount_name": user.luxor_subaccount_name},
        )
        return user

    def update_customer(self, customer_id: int, data: dict, actor_id: int = None) -> User:
        user = self.get_customer(customer_id)
        if "group_id" in data:
            self._check_group(data["group_id"])

        fields = ("name", "luxor_subaccount_name", "group_id", "is_active")
        before = {f: getattr(user, f) for f in fields}
        for field in fields:
            if field in data:
                setattr(user, field, data[field])
        changes = diff(before, {f: getattr(user, f) for f in fields})
        if not changes:
            return user

        self.db.commit()
        self.db.refresh(user)
        self.audit.record(
            AuditAction.CUSTOMER_UPDATED, "User", user.id,
            f"Customer {user.email} updated",
            user_id=actor_id, changes=changes,
        )
        return user

    def delete_customer(self, customer_id: int, actor_id: int = None) -> User:
        """Soft delete: the row stays for invoices and payments that reference it."""
        user = self.get_customer(customer_id)
        if actor_id is not None and user.id == actor_id:
            raise InvalidRequestError("You cannot delete your own account")

        user.is_deleted = True
        user.deleted_at = get_utc_now()
        user.is_active = False
        self.db.commit()

        self.audit.record(
            AuditAction.CUSTOMER_DELETED, "User", user.id,
            f"Customer {user.email} deleted",
            user_id=actor_id,
        )
        return user

    # ==================== GROUPS ====================

    def list_groups(self) -> List[Group]:
        return self.db.query(Group).order_by(Group.name).all()

    def create_group(self, name: str, relationship_manager: str = None, email: str = None) -> Group:
        if self.db.query(Group).filter(Group.name == name).first():
            raise ConflictError("Group already exists")
        group = Group(name=name, relationship_manager=relationship_manager, email=email)
        self.db.add(group)
        self.db.commit()
        self.db.refresh(group)
        return group


class MinerService:
    def __init__(self, db: Session):
        self.db = db

    def list_miners(self, customer_id: int = None, status: MinerStatus = None) -> List[Miner]:
        query = self.db.query(Miner).filter(Miner.is_deleted == False)
        if customer_id is not None:
            query = query.filter(Miner.user_id == customer_id)
        if status:
            query = query.filter(Miner.status == status)
        return query.order_by(Miner.id).all()

    def active_miner_count(self, customer_id: int) -> int:
        """Live miner count used for invoicing."""
        return self.db.query(func.count(Miner.id)).filter(
            Miner.user_id == customer_id,
            Miner.status == MinerStatus.ACTIVE,
            Miner.is_deleted == False
        ).scalar() or 0

    def get_miner(self, miner_id: int) -> Miner:
        miner = self.db.query(Miner).filter(
            Miner.id == miner_id,
            Miner.is_deleted == False
        ).first()
        if not miner:
            raise NotFoundError("Miner not found")
        return miner

    def add_miner(self, customer_id: int, name: str, model: str = None,
                  status: MinerStatus = MinerStatus.ACTIVE) -> Miner:
        customer = self.db.query(User).filter(
            User.id == customer_id,
            User.is_deleted == False
        ).first()
        if not customer:
            raise NotFoundError("Customer not found")

        miner = Miner(user_id=customer_id, name=name, model=model, status=status)
        self.db.add(miner)
        self.db.commit()
        self.db.refresh(miner)
        return miner

    def update_miner(self, miner_id: int, data: dict) -> Miner:
        miner = self.get_miner(miner_id)
        for field in ("name", "model", "status"):
            if data.get(field) is not None:
                setattr(miner, field, data[field])
        self.db.commit()
        self.db.refresh(miner)
        return miner

    def delete_miner(self, miner_id: int) -> Miner:
        miner = self.get_miner(miner_id)
        miner.is_deleted = True
        miner.deleted_at = get_utc_now()
        self.db.commit()
        return miner


def customer_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "luxor_subaccount_name": user.luxor_subaccount_name,
        "group_id": user.group_id,
        "group_name": user.group.name if user.group else None,
        "is_active": user.is_active,
        "is_deleted": user.is_deleted,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def group_to_dict(group: Group) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "relationship_manager": group.relationship_manager,
        "email": group.email,
    }


def miner_to_dict(miner: Miner) -> dict:
    return {
        "id": miner.id,
        "user_id": miner.user_id,
        "name": miner.name,
        "model": miner.model,
        "status": miner.status.value,
        "created_at": miner.created_at.isoformat() if miner.created_at else None,
    }
