import html
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from compliance_alerts.config import get_settings
from compliance_alerts.core.constants import (
    ACK_EMAIL_LINK,
    ACK_IN_APP_BUTTON,
    ALERT_STATUSES,
    STATUS_ACKNOWLEDGED,
    TERMINAL_STATUSES,
)
from compliance_alerts.core.errors import AlertNotFoundError, AlertStateError, DuplicateEventError
from compliance_alerts.core.security import verify_ack_token
from compliance_alerts.dependencies import (
    get_adapters,
    get_db,
    get_now,
    get_session_factory,
    require_auth,
)
from compliance_alerts.models.alert import Alert
from compliance_alerts.models.deadline import Deadline
from compliance_alerts.schemas.alert import (
    AlertList,
    AlertRead,
    AuditEntryRead,
    PassResult,
    SnoozeRequest,
)
from compliance_alerts.services import alert_state
from compliance_alerts.services.alert_scheduler import run_scheduling_pass
from compliance_alerts.services.audit_log import alert_history, org_audit_log
from compliance_alerts.services.dispatcher import dispatch_due_alerts
from compliance_alerts.services.escalation import escalate_unacknowledged
from compliance_alerts.services.rate_limit import SqlRateLimiter

router = APIRouter(prefix="/alerts", tags=["Alerts"])

_ACK_PAGE = (
    "<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>{title}</title></head>"
    "<body style=\"font-family: sans-serif; padding: 40px;\"><h1>{title}</h1><p>{message}</p></body></html>"
)


def _load_alert(db: Session, alert_id: int) -> Alert:
    try:
        return alert_state.get_alert(db, alert_id)
    except AlertNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Alert not found.") from exc


def _acknowledge(db: Session, alert: Alert, method: str, now) -> Alert:
    try:
        alert_state.acknowledge(db, alert, method=method, now=now)
    except DuplicateEventError as exc:
        db.rollback()
        # Repeat acknowledgements of a closed alert are a no-op.
        if exc.current_status in TERMINAL_STATUSES:
            return alert
        raise HTTPException(
            status_code=409,
            detail="Alert is {} and cannot be acknowledged.".format(exc.current_status),
        ) from exc
    db.commit()
    return alert


@router.get("", response_model=AlertList)
def list_alerts(
    org_id: Optional[str] = Query(None),
    deadline_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _auth=Depends(require_auth),
):
    if not org_id and not deadline_id:
        raise HTTPException(status_code=400, detail="org_id or deadline_id is required.")
    if status is not None and status not in ALERT_STATUSES:
        raise HTTPException(status_code=400, detail="Unknown status: {}".format(status))

    stmt = select(Alert)
    if org_id:
        stmt = stmt.where(Alert.org_id == org_id)
    if deadline_id:
        stmt = stmt.where(Alert.deadline_id == deadline_id)
    if status:
        stmt = stmt.where(Alert.status == status)
    stmt = stmt.order_by(Alert.scheduled_for.desc(), Alert.id.desc()).limit(limit).offset(offset)
    items = db.execute(stmt).scalars().all()
    return AlertList(items=[AlertRead.model_validate(item) for item in items], limit=limit, offset=offset)


@router.get("/audit", response_model=list[AuditEntryRead])
def get_org_audit_log(
    org_id: str = Query(...),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _auth=Depends(require_auth),
):
    return org_audit_log(db, org_id, limit=limit, offset=offset)


@router.post("/run-scheduling", response_model=PassResult)
def run_scheduling_now(db: Session = Depends(get_db), now=Depends(get_now), _auth=Depends(require_auth)):
    try:
        stats = run_scheduling_pass(db, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return PassResult(stats=stats)


@router.post("/run-dispatch", response_model=PassResult)
def run_dispatch_now(
    session_factory=Depends(get_session_factory),
    adapters: dict = Depends(get_adapters),
    now=Depends(get_now),
    _auth=Depends(require_auth),
):
    settings = get_settings()
    stats = dispatch_due_alerts(
        session_factory,
        adapters,
        now=now,
        settings=settings,
        rate_limiter=SqlRateLimiter.for_sms(settings),
    )
    return PassResult(stats=stats)


@router.post("/run-escalations", response_model=PassResult)
def run_escalations_now(db: Session = Depends(get_db), now=Depends(get_now), _auth=Depends(require_auth)):
    grace = timedelta(hours=get_settings().ESCALATION_GRACE_HOURS)
    try:
        stats = escalate_unacknowledged(db, now=now, grace=grace)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return PassResult(stats=stats)


@router.get("/{alert_id}", response_model=AlertRead)
def get_alert(alert_id: int, db: Session = Depends(get_db), _auth=Depends(require_auth)):
    return _load_alert(db, alert_id)


@router.get("/{alert_id}/history", response_model=list[AuditEntryRead])
def get_alert_history(alert_id: int, db: Session = Depends(get_db), _auth=Depends(require_auth)):
    _load_alert(db, alert_id)
    return alert_history(db, alert_id)


@router.post("/{alert_id}/snooze", response_model=AlertRead)
def snooze_alert(
    alert_id: int,
    payload: SnoozeRequest,
    db: Session = Depends(get_db),
    now=Depends(get_now),
    _auth=Depends(require_auth),
):
    alert = _load_alert(db, alert_id)
    deadline = db.get(Deadline, alert.deadline_id)
    try:
        alert_state.snooze(
            db,
            alert,
            until=payload.until,
            now=now,
            due_at=deadline.due_at if deadline is not None else None,
        )
    except AlertStateError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    db.commit()
    return alert


@router.post("/{alert_id}/unsnooze", response_model=AlertRead)
def unsnooze_alert(
    alert_id: int,
    db: Session = Depends(get_db),
    now=Depends(get_now),
    _auth=Depends(require_auth),
):
    alert = _load_alert(db, alert_id)
    try:
        alert_state.unsnooze(db, alert, now=now)
    except AlertStateError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    db.commit()
    return alert


@router.post("/{alert_id}/acknowledge", response_model=AlertRead)
def acknowledge_alert(
    alert_id: int,
    db: Session = Depends(get_db),
    now=Depends(get_now),
    _auth=Depends(require_auth),
):
    alert = _load_alert(db, alert_id)
    return _acknowledge(db, alert, ACK_IN_APP_BUTTON, now)


@router.get("/{alert_id}/ack", response_class=HTMLResponse)
def acknowledge_from_email(
    alert_id: int,
    token: str = Query(...),
    db: Session = Depends(get_db),
    now=Depends(get_now),
):
    if not verify_ack_token(alert_id, token):
        raise HTTPException(status_code=401, detail="Invalid acknowledgment link.")
    alert = _load_alert(db, alert_id)
    _acknowledge(db, alert, ACK_EMAIL_LINK, now)
    deadline = db.get(Deadline, alert.deadline_id)
    title = deadline.title if deadline is not None and deadline.title else "this deadline"
    if alert.status != STATUS_ACKNOWLEDGED:
        return HTMLResponse(
            _ACK_PAGE.format(
                title="Alert closed",
                message="The alert for {} is already closed ({}).".format(html.escape(title), alert.status),
            )
        )
    return HTMLResponse(
        _ACK_PAGE.format(
            title="Alert acknowledged",
            message="Thanks! Your acknowledgment for {} has been recorded.".format(html.escape(title)),
        )
    )
