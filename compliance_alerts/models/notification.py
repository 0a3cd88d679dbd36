from datetime import datetime, timezone

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String

from compliance_alerts.database.base import Base
from compliance_alerts.database.types import UTCDateTime


class Notification(Base):
    """In-app inbox entry."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    org_id = Column(String(64), nullable=False)
    # "*" addresses the whole organization.
    user_id = Column(String(64), nullable=False)
    alert_id = Column(Integer, ForeignKey("alerts.id"))
    type = Column(String(40), nullable=False, default="deadline_reminder")
    title = Column(String(255), nullable=False)
    message = Column(String, nullable=False)
    urgency = Column(String(20))
    data = Column(JSON)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    read_at = Column(UTCDateTime)

    __table_args__ = (
        Index("idx_notifications_user", "org_id", "user_id", "read_at"),
    )


__all__ = ["Notification"]
