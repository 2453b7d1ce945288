"""
Mining pool proxy.
Endpoint: /api/v1/luxor?endpoint=<name>&...

Only allow-listed endpoints are forwarded. Clients are pinned to their
own subaccount.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from database.base import get_utc_now
from database.models import User
from core.dependencies import get_current_active_user
from services.luxor import LuxorClient, LuxorError, get_luxor_client, proxy

router = APIRouter()


@router.get("")
async def luxor_proxy(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    client: LuxorClient = Depends(get_luxor_client),
):
    try:
        path, params, data = await proxy(client, current_user, dict(request.query_params))
    except LuxorError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"success": False, "error": e.message},
        )
    return {
        "success": True,
        "data": data,
        "error": None,
        "timestamp": get_utc_now().isoformat(),
    }
