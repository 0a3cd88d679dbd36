from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class NotificationRead(BaseModel):
    id: int
    org_id: str
    user_id: str
    alert_id: Optional[int] = None
    type: str
    title: str
    message: str
    urgency: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UnreadCount(BaseModel):
    unread: int


class MarkAllReadResult(BaseModel):
    updated: int
