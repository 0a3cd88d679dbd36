from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class DeadlineSnapshot(BaseModel):
    """The upstream deadline as it looks after the triggering change."""

    id: str
    org_id: str
    title: str = ""
    due_at: datetime
    recurrence_type: Optional[str] = None
    recurrence_interval_days: Optional[int] = None
    recurrence_base: Optional[Literal["due_date", "completion_date"]] = None
    assignee_id: Optional[str] = None
    assignee_email: Optional[str] = None
    completed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class DeadlineEvent(BaseModel):
    event: Literal["created", "updated", "completed", "deleted", "reopened"]
    deadline: DeadlineSnapshot


class DeadlineEventResult(BaseModel):
    deadline_id: str
    event: str
    created: List[int] = Field(default_factory=list)
    cancelled: List[int] = Field(default_factory=list)
