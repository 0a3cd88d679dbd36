import json
import logging
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from compliance_alerts.config import get_settings
from compliance_alerts.core.errors import MalformedWebhookError
from compliance_alerts.core.security import verify_svix_signature, verify_twilio_signature
from compliance_alerts.dependencies import get_db, get_now
from compliance_alerts.services.webhooks import handle_resend_event, handle_twilio_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _twiml(reply=None) -> Response:
    if reply:
        body = '<?xml version="1.0" encoding="UTF-8"?><Response><Message>{}</Message></Response>'.format(
            escape(reply)
        )
    else:
        body = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'
    return Response(content=body, media_type="text/xml")


@router.get("/resend")
def resend_webhook_status():
    return {"status": "Resend webhook endpoint"}


@router.post("/resend")
async def resend_webhook(request: Request, db: Session = Depends(get_db), now=Depends(get_now)):
    settings = get_settings()
    body = await request.body()
    if settings.RESEND_WEBHOOK_SECRET and not verify_svix_signature(
        body, request.headers, settings.RESEND_WEBHOOK_SECRET
    ):
        raise HTTPException(status_code=401, detail="Invalid webhook signature.")

    try:
        payload = json.loads(body.decode("utf-8") or "null")
    except (UnicodeDecodeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON.") from exc

    try:
        result = handle_resend_event(db, payload, now=now)
        db.commit()
    except MalformedWebhookError as exc:
        db.rollback()
        logger.warning("Rejected Resend webhook: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception:
        db.rollback()
        raise
    return {"received": True, **result}


@router.get("/twilio")
def twilio_webhook_status():
    return {"status": "Twilio webhook endpoint"}


@router.post("/twilio")
async def twilio_webhook(request: Request, db: Session = Depends(get_db), now=Depends(get_now)):
    settings = get_settings()
    form = {key: str(value) for key, value in (await request.form()).items()}
    if settings.TWILIO_VALIDATE_SIGNATURE and not verify_twilio_signature(
        str(request.url),
        form,
        request.headers.get("X-Twilio-Signature"),
        settings.TWILIO_AUTH_TOKEN or "",
    ):
        raise HTTPException(status_code=401, detail="Invalid webhook signature.")

    try:
        result = handle_twilio_webhook(db, form, now=now)
        db.commit()
    except MalformedWebhookError as exc:
        db.rollback()
        logger.warning("Rejected Twilio webhook: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception:
        db.rollback()
        raise
    return _twiml(result.get("reply"))
