from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AlertRead(BaseModel):
    id: int
    deadline_id: str
    org_id: str
    user_id: Optional[str] = None
    destination: str
    channel: str
    scheduled_for: datetime
    scheduled_urgency: str
    status: str
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_via: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    snoozed_until: Optional[datetime] = None
    provider_message_id: Optional[str] = None
    escalated_from_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AlertList(BaseModel):
    items: List[AlertRead] = Field(default_factory=list)
    limit: int
    offset: int


class AuditEntryRead(BaseModel):
    id: int
    alert_id: int
    org_id: str
    action: str
    timestamp: datetime
    details: Optional[dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class SnoozeRequest(BaseModel):
    until: datetime


class PassResult(BaseModel):
    status: str = "completed"
    stats: dict[str, Any]
