import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from compliance_alerts.dependencies import get_db, get_now, require_auth
from compliance_alerts.schemas.deadline import DeadlineEvent, DeadlineEventResult
from compliance_alerts.services.alert_scheduler import handle_deadline_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deadlines", tags=["Deadlines"])


@router.post("/events", response_model=DeadlineEventResult)
def receive_deadline_event(
    payload: DeadlineEvent,
    db: Session = Depends(get_db),
    now=Depends(get_now),
    _auth=Depends(require_auth),
):
    values = payload.deadline.model_dump(exclude={"id"}, exclude_unset=True)
    values["org_id"] = payload.deadline.org_id
    values["due_at"] = payload.deadline.due_at
    try:
        result = handle_deadline_event(db, payload.event, payload.deadline.id, values, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(
        "Deadline %s %s: %d created, %d cancelled",
        payload.deadline.id,
        payload.event,
        len(result["created"]),
        len(result["cancelled"]),
        extra={"org_id": payload.deadline.org_id},
    )
    return DeadlineEventResult(
        deadline_id=payload.deadline.id,
        event=payload.event,
        created=result["created"],
        cancelled=result["cancelled"],
    )
