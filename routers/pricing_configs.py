"""
Customer pricing configs router (admin).
Endpoint: /api/v1/pricing-configs/...
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from database.models import User
from core.dependencies import get_admin_user
from schemas.pricing import PricingConfigCreate, PricingConfigUpdate
from services.pricing import PricingService, config_to_dict

router = APIRouter()


@router.get("")
async def list_pricing_configs(
    customer_id: Optional[int] = None,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    configs = PricingService(db).list_configs(customer_id)
    return {"data": [config_to_dict(c) for c in configs], "count": len(configs)}


@router.get("/resolve")
async def resolve_price(
    customer_id: int = Query(...),
    at: Optional[datetime] = None,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    """Unit price in effect for a customer at a date (default: now)."""
    result = PricingService(db).resolve(customer_id, at)
    return {
        "customer_id": customer_id,
        "unit_price": float(result["unit_price"]),
        "source": result["source"],
        "config_id": result["config_id"],
        "at": result["at"].isoformat(),
    }


@router.post("", status_code=201)
async def create_pricing_config(
    body: PricingConfigCreate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    config = PricingService(db).create_config(
        body.user_id, body.unit_price, body.effective_from, body.effective_to, actor_id=admin.id,
    )
    return {"success": True, "message": "Pricing config created", "data": config_to_dict(config)}


@router.get("/{config_id}")
async def get_pricing_config(
    config_id: int,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    return config_to_dict(PricingService(db).get_config(config_id))


@router.patch("/{config_id}")
async def update_pricing_config(
    config_id: int,
    body: PricingConfigUpdate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    config = PricingService(db).update_config(
        config_id, body.model_dump(exclude_unset=True), actor_id=admin.id
    )
    return {"success": True, "message": "Pricing config updated", "data": config_to_dict(config)}
