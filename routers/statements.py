"""
Customer statements.
Endpoint: /api/v1/statements/...
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
import io

from database import get_db
from database.models import User
from core.dependencies import get_current_active_user, ensure_customer_access
from services.statements import StatementService, StatementExcelGenerator, statement_filename

router = APIRouter()


@router.get("/{customer_id}")
async def get_statement(
    customer_id: int,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    ensure_customer_access(current_user, customer_id)
    return StatementService(db).build(customer_id, from_date, to_date)


@router.get("/{customer_id}/excel")
async def export_statement_excel(
    customer_id: int,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    ensure_customer_access(current_user, customer_id)
    statement = StatementService(db).build(customer_id, from_date, to_date)
    content = StatementExcelGenerator().generate(statement)
    filename = statement_filename(statement)
    return StreamingResponse(
        io.BytesIO(content),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
