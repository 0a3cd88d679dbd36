from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from compliance_alerts.dependencies import get_db, get_now, require_auth
from compliance_alerts.schemas.preferences import (
    PreferencePatch,
    PreferenceRead,
    PreferenceSaveResult,
    PreferenceUpdate,
)
from compliance_alerts.services.alert_scheduler import reschedule_for_preferences
from compliance_alerts.services.preferences import resolve_preferences, save_preferences

router = APIRouter(prefix="/preferences", tags=["Preferences"])

_SCOPE_FIELDS = {"org_id", "user_id"}


def _save(db: Session, org_id: str, user_id: Optional[str], values: dict, now, *, partial: bool):
    try:
        save_preferences(db, org_id, user_id, values, now=now, partial=partial)
        stats = reschedule_for_preferences(db, org_id, user_id, now=now)
        resolved = resolve_preferences(db, org_id, user_id)
        db.commit()
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception:
        db.rollback()
        raise
    return PreferenceSaveResult(preferences=PreferenceRead.model_validate(resolved), reschedule=stats)


@router.get("", response_model=PreferenceRead)
def get_preferences(
    org_id: str = Query(...),
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _auth=Depends(require_auth),
):
    return PreferenceRead.model_validate(resolve_preferences(db, org_id, user_id))


@router.put("", response_model=PreferenceSaveResult)
def put_preferences(
    payload: PreferenceUpdate,
    db: Session = Depends(get_db),
    now=Depends(get_now),
    _auth=Depends(require_auth),
):
    values = payload.model_dump(exclude=_SCOPE_FIELDS)
    return _save(db, payload.org_id, payload.user_id, values, now, partial=False)


@router.patch("", response_model=PreferenceSaveResult)
def patch_preferences(
    payload: PreferencePatch,
    db: Session = Depends(get_db),
    now=Depends(get_now),
    _auth=Depends(require_auth),
):
    values = payload.model_dump(exclude=_SCOPE_FIELDS, exclude_unset=True)
    if not values:
        raise HTTPException(status_code=400, detail="No preference fields to update.")
    return _save(db, payload.org_id, payload.user_id, values, now, partial=True)
