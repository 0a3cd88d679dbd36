from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from compliance_alerts.core.constants import ORG_INBOX
from compliance_alerts.dependencies import get_db, get_now, require_auth
from compliance_alerts.models.notification import Notification
from compliance_alerts.schemas.notification import MarkAllReadResult, NotificationRead, UnreadCount

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _recipient_filter(org_id: str, user_id: Optional[str]):
    conditions = [Notification.org_id == org_id]
    if user_id:
        # A user also sees what was addressed to the whole organization.
        conditions.append(Notification.user_id.in_((user_id, ORG_INBOX)))
    return conditions


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    org_id: str = Query(...),
    user_id: Optional[str] = Query(None),
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    _auth=Depends(require_auth),
):
    stmt = select(Notification).where(*_recipient_filter(org_id, user_id))
    if unread_only:
        stmt = stmt.where(Notification.read_at.is_(None))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    return db.execute(stmt).scalars().all()


@router.get("/unread-count", response_model=UnreadCount)
def unread_count(
    org_id: str = Query(...),
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _auth=Depends(require_auth),
):
    stmt = (
        select(func.count(Notification.id))
        .where(*_recipient_filter(org_id, user_id))
        .where(Notification.read_at.is_(None))
    )
    return UnreadCount(unread=db.execute(stmt).scalar_one())


@router.post("/read-all", response_model=MarkAllReadResult)
def mark_all_read(
    org_id: str = Query(...),
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    now=Depends(get_now),
    _auth=Depends(require_auth),
):
    stmt = (
        update(Notification)
        .where(*_recipient_filter(org_id, user_id))
        .where(Notification.read_at.is_(None))
        .values(read_at=now)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return MarkAllReadResult(updated=result.rowcount)


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    now=Depends(get_now),
    _auth=Depends(require_auth),
):
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found.")
    if notification.read_at is None:
        notification.read_at = now
        db.commit()
    return notification
