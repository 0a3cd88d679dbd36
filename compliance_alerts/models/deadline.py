from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, String

from compliance_alerts.database.base import Base
from compliance_alerts.database.types import UTCDateTime


class Deadline(Base):
    """Last snapshot of an upstream deadline, as supplied by a trigger."""

    __tablename__ = "deadlines"

    id = Column(String(64), primary_key=True)
    org_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False, default="")
    due_at = Column(UTCDateTime, nullable=False)

    recurrence_type = Column(String(20))
    recurrence_interval_days = Column(Integer)
    recurrence_base = Column(String(20))

    assignee_id = Column(String(64))
    assignee_email = Column(String(320))

    completed_at = Column(UTCDateTime)
    deleted_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_deadlines_org", "org_id"),
        Index("idx_deadlines_org_assignee", "org_id", "assignee_id"),
    )

    @property
    def is_open(self) -> bool:
        return self.completed_at is None and self.deleted_at is None


__all__ = ["Deadline"]
