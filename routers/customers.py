"""
Customers router (admin). Deleting a customer needs SUPER_ADMIN.
Customers are soft-deleted; their invoices and payments stay.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from database.models import User, RoleType
from core.dependencies import get_admin_user, get_current_active_user, ensure_customer_access, RoleChecker
from schemas.customer import CustomerCreate, CustomerUpdate, GroupCreate
from services.customers import (
    CustomerService, MinerService,
    customer_to_dict, group_to_dict, miner_to_dict,
)

router = APIRouter()


@router.get("")
async def list_customers(
    search: Optional[str] = None,
    role: Optional[RoleType] = None,
    include_deleted: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    users, total = CustomerService(db).list_customers(search, role, include_deleted, skip, limit)
    return {"data": [customer_to_dict(u) for u in users], "count": total}


@router.post("", status_code=201)
async def create_customer(
    body: CustomerCreate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    user = CustomerService(db).create_customer(body.model_dump(), actor_id=admin.id)
    return {"success": True, "message": "Customer created", "data": customer_to_dict(user)}


@router.get("/groups")
async def list_groups(
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    groups = CustomerService(db).list_groups()
    return {"data": [group_to_dict(g) for g in groups], "count": len(groups)}


@router.post("/groups", status_code=201)
async def create_group(
    body: GroupCreate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    group = CustomerService(db).create_group(body.name, body.relationship_manager, body.email)
    return {"success": True, "message": "Group created", "data": group_to_dict(group)}


@router.get("/{customer_id}")
async def get_customer(
    customer_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    ensure_customer_access(current_user, customer_id)
    user = CustomerService(db).get_customer(customer_id)
    data = customer_to_dict(user)
    data["active_miners"] = MinerService(db).active_miner_count(user.id)
    return data


@router.patch("/{customer_id}")
async def update_customer(
    customer_id: int,
    body: CustomerUpdate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    user = CustomerService(db).update_customer(
        customer_id, body.model_dump(exclude_unset=True), actor_id=admin.id
    )
    return {"success": True, "message": "Customer updated", "data": customer_to_dict(user)}


@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: int,
    admin: User = Depends(RoleChecker([RoleType.SUPER_ADMIN])),
    db: Session = Depends(get_db),
):
    CustomerService(db).delete_customer(customer_id, actor_id=admin.id)
    return {"success": True, "message": "Customer deleted"}


@router.get("/{customer_id}/miners")
async def list_customer_miners(
    customer_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    ensure_customer_access(current_user, customer_id)
    miners = MinerService(db).list_miners(customer_id)
    return {"data": [miner_to_dict(m) for m in miners], "count": len(miners)}
