"""
Hosted miners router. The active miner count feeds invoice totals.
"""

from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from database.models import User, MinerStatus
from core.dependencies import get_admin_user, get_current_active_user
from schemas.customer import MinerCreate, MinerUpdate
from services.customers import MinerService, miner_to_dict

router = APIRouter()


@router.get("")
async def list_miners(
    customer_id: Optional[int] = None,
    status: Optional[MinerStatus] = None,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Admins see every miner; clients only their own."""
    if not current_user.is_admin:
        customer_id = current_user.id
    miners = MinerService(db).list_miners(customer_id, status)
    return {"data": [miner_to_dict(m) for m in miners], "count": len(miners)}


@router.post("", status_code=201)
async def add_miner(
    body: MinerCreate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    miner = MinerService(db).add_miner(body.user_id, body.name, body.model, body.status)
    return {"success": True, "message": "Miner added", "data": miner_to_dict(miner)}


@router.patch("/{miner_id}")
async def update_miner(
    miner_id: int,
    body: MinerUpdate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    miner = MinerService(db).update_miner(miner_id, body.model_dump(exclude_unset=True))
    return {"success": True, "message": "Miner updated", "data": miner_to_dict(miner)}


@router.delete("/{miner_id}")
async def delete_miner(
    miner_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    MinerService(db).delete_miner(miner_id)
    return {"success": True, "message": "Miner deleted"}
