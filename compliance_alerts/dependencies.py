from datetime import datetime
from typing import Optional

from fastapi import Header

from compliance_alerts.config import get_settings
from compliance_alerts.core.dates import utc_now
from compliance_alerts.core.security import authenticate_request
from compliance_alerts.database.session import SessionLocal, get_db
from compliance_alerts.services.channels import build_adapters


def require_auth(
    api_key: Optional[str] = Header(None, alias="X-API-Key"),
    api_key_alt: Optional[str] = Header(None, alias="api-key"),
    authorization: Optional[str] = Header(None),
):
    api_key_value = api_key or api_key_alt
    return authenticate_request(
        api_key=api_key_value,
        authorization=authorization,
        require_auth=True,
    )


def get_now() -> datetime:
    return utc_now()


def get_adapters() -> dict:
    return build_adapters(get_settings())


def get_session_factory():
    return SessionLocal


__all__ = ["get_adapters", "get_db", "get_now", "get_session_factory", "require_auth"]
