"""
Audit and notification recorder.

The one place that writes audit_logs and invoice_notifications. Callers run
it after their business commit: a failure here is logged and rolled back,
never raised, so it cannot undo the state change it describes.
"""

import logging
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional, Iterable

from sqlalchemy.orm import Session

from database.base import get_utc_now
from database.models import (
    AuditLog, AuditAction, InvoiceNotification,
    NotificationType, NotificationStatus,
)


logger = logging.getLogger(__name__)


def to_jsonable(value):
    """Make Decimal / datetime / Enum values storable in a JSON column."""
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def diff(before: dict, after: dict) -> dict:
    """{field: {"from": old, "to": new}} for every field whose value changed."""
    changes = {}
    for key, new in after.items():
        old = before.get(key)
        if old != new:
            changes[key] = {"from": old, "to": new}
    return changes


class AuditRecorder:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: int,
        description: str,
        user_id: Optional[int] = None,
        changes: Optional[dict] = None,
    ) -> Optional[AuditLog]:
        try:
            entry = AuditLog(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
                description=description,
                changes=to_jsonable(changes) if changes else None,
                created_at=get_utc_now(),
            )
            self.db.add(entry)
            self.db.commit()
            return entry
        except Exception as e:
            self.db.rollback()
            logger.error(f"Audit write failed ({action.value} {entity_type}#{entity_id}): {e}")
            return None

    def notification(
        self,
        invoice_id: int,
        notification_type: NotificationType,
        sent_to: str,
        status: NotificationStatus,
        cc_emails: Iterable[str] = (),
        failure_reason: Optional[str] = None,
        next_retry_at: Optional[datetime] = None,
    ) -> Optional[InvoiceNotification]:
        try:
            row = InvoiceNotification(
                invoice_id=invoice_id,
                notification_type=notification_type,
                sent_to=sent_to,
                cc_emails=",".join(cc_emails) or None,
                status=status,
                sent_at=get_utc_now() if status == NotificationStatus.SENT else None,
                failure_reason=failure_reason,
                retry_count=0,
                next_retry_at=next_retry_at,
            )
            self.db.add(row)
            self.db.commit()
            return row
        except Exception as e:
            self.db.rollback()
            logger.error(f"Notification write failed (invoice #{invoice_id}): {e}")
            return None

    def history(self, entity_type: str, entity_id: int) -> list:
        return self.db.query(AuditLog).filter(
            AuditLog.entity_type == entity_type,
            AuditLog.entity_id == entity_id,
        ).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).all()


def audit_to_dict(entry: AuditLog) -> dict:
    return {
        "id": entry.id,
        "action": entry.action.value,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "user_id": entry.user_id,
        "description": entry.description,
        "changes": entry.changes,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
