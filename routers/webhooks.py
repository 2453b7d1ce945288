"""
Inbound webhooks from payment providers.
Endpoint: /api/v1/webhooks/...
"""

import json
import logging

from fastapi import APIRouter, Depends, Request, HTTPException
from sqlalchemy.orm import Session

from core.config import settings
from database import get_db
from services.confirmo import ConfirmoPaymentService, verify_signature, confirmo_payment_to_dict
from services.email import get_email_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/confirmo")
async def confirmo_webhook(
    request: Request,
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
):
    """
    Payment status update from Confirmo.
    When a webhook secret is configured the X-Confirmo-Signature header
    (hex HMAC-SHA256 of the raw body) is mandatory.
    """
    body = await request.body()
    if settings.CONFIRMO_WEBHOOK_SECRET:
        signature = request.headers.get("X-Confirmo-Signature")
        if not verify_signature(body, signature, settings.CONFIRMO_WEBHOOK_SECRET):
            logger.warning("Confirmo webhook rejected: bad signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict) or not payload.get("id"):
        raise HTTPException(status_code=400, detail="Missing payment id")

    payment = ConfirmoPaymentService(db, mailer=mailer).handle_webhook(payload)
    return {"success": True, "data": confirmo_payment_to_dict(payment)}
