from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Index, Integer, String, text

from compliance_alerts.core.constants import ESCALATION_KEY_WHERE, PLANNED_KEY_WHERE
from compliance_alerts.database.base import Base
from compliance_alerts.database.types import UTCDateTime


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True)
    deadline_id = Column(String(64), ForeignKey("deadlines.id"), nullable=False)
    org_id = Column(String(64), nullable=False)
    user_id = Column(String(64))
    destination = Column(String(320), nullable=False)

    channel = Column(String(20), nullable=False)
    scheduled_for = Column(UTCDateTime, nullable=False)
    # Frozen at creation from the alert-day offset; never recomputed.
    scheduled_urgency = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="scheduled")

    sent_at = Column(UTCDateTime)
    delivered_at = Column(UTCDateTime)
    acknowledged_at = Column(UTCDateTime)
    acknowledged_via = Column(String(20))
    cancelled_at = Column(UTCDateTime)

    error_message = Column(String)
    retry_count = Column(Integer, nullable=False, default=0)
    snoozed_until = Column(UTCDateTime)
    provider_message_id = Column(String(128))

    claimed_by = Column(String(120))
    claimed_at = Column(UTCDateTime)

    escalated_from_id = Column(Integer, ForeignKey("alerts.id"))

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        # Planned alerts only; escalation alerts are keyed by their source below.
        Index(
            "uq_alerts_planned_key",
            "deadline_id",
            "channel",
            "scheduled_for",
            "destination",
            unique=True,
            sqlite_where=text(PLANNED_KEY_WHERE),
            postgresql_where=text(PLANNED_KEY_WHERE),
        ),
        Index(
            "uq_alerts_escalation_target",
            "escalated_from_id",
            "destination",
            unique=True,
            sqlite_where=text(ESCALATION_KEY_WHERE),
            postgresql_where=text(ESCALATION_KEY_WHERE),
        ),
        Index("idx_alerts_status_scheduled", "status", "scheduled_for"),
        Index("idx_alerts_org_scheduled", "org_id", "scheduled_for"),
        Index("idx_alerts_deadline", "deadline_id"),
        Index("idx_alerts_provider_message", "provider_message_id"),
    )


__all__ = ["Alert"]
