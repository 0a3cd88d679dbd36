from datetime import datetime, timezone

from sqlalchemy import JSON, Column, ForeignKey, Integer, String

from compliance_alerts.database.base import Base
from compliance_alerts.database.types import UTCDateTime


class AlertEscalation(Base):
    """One row per escalated alert; the unique source id makes escalation fire once."""

    __tablename__ = "alert_escalations"

    id = Column(Integer, primary_key=True)
    source_alert_id = Column(Integer, ForeignKey("alerts.id"), nullable=False, unique=True)
    org_id = Column(String(64), nullable=False)
    reason = Column(String(40), nullable=False)
    contacts = Column(JSON, nullable=False, default=list)
    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


__all__ = ["AlertEscalation"]
