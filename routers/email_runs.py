"""
Bulk invoice email reports (admin).
Endpoint: /api/v1/email-runs/...
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from database.models import User
from core.dependencies import get_admin_user
from schemas.invoice import ResendRequest
from services.confirmo import get_confirmo_client, ConfirmoPaymentService
from services.email import get_email_service
from services.email_runs import EmailRunService, run_to_dict, result_to_dict

router = APIRouter()


@router.get("")
async def list_email_runs(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    runs, total = EmailRunService(db).list_runs(skip, limit)
    return {"success": True, "data": [run_to_dict(r) for r in runs], "count": total}


@router.get("/{run_id}")
async def get_email_run(
    run_id: int,
    status: Optional[str] = Query(None, description="success | failed"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    run, results, total = EmailRunService(db).run_results(
        run_id, status, skip=(page - 1) * limit, limit=limit
    )
    return {
        "success": True,
        "data": {
            "run": run_to_dict(run),
            "results": [result_to_dict(r) for r in results],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": (total + limit - 1) // limit,
            },
        },
    }


@router.post("/{run_id}/resend")
async def resend_email_run(
    run_id: int,
    body: ResendRequest,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    mailer=Depends(get_email_service),
    confirmo_client=Depends(get_confirmo_client),
):
    crypto_link = None
    if confirmo_client is not None:
        crypto_link = ConfirmoPaymentService(db, confirmo_client).payment_url_for
    outcome = EmailRunService(db, mailer=mailer, crypto_link=crypto_link).resend(
        run_id, body.result_ids, actor_id=admin.id
    )
    summary = outcome["summary"]
    return {
        "success": True,
        "message": f"Resent {summary['successful']} invoice(s), {summary['failed']} failed",
        **outcome,
    }
