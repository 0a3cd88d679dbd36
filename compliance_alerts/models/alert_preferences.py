from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, Index, Integer, String, text

from compliance_alerts.database.base import Base
from compliance_alerts.database.types import UTCDateTime


class AlertPreference(Base):
    __tablename__ = "alert_preferences"

    id = Column(Integer, primary_key=True)
    org_id = Column(String(64), nullable=False)
    # NULL means the organization-wide default.
    user_id = Column(String(64))

    early_channels = Column(JSON, nullable=False, default=list)
    medium_channels = Column(JSON, nullable=False, default=list)
    high_channels = Column(JSON, nullable=False, default=list)
    critical_channels = Column(JSON, nullable=False, default=list)
    alert_days = Column(JSON, nullable=False, default=list)

    escalation_enabled = Column(Boolean, nullable=False, default=True)
    escalation_contacts = Column(JSON, nullable=False, default=list)

    phone_number = Column(String(32))
    email_override = Column(String(320))

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(UTCDateTime)

    __table_args__ = (
        Index("uq_alert_preferences_org_user", "org_id", "user_id", unique=True),
        Index(
            "uq_alert_preferences_org_default",
            "org_id",
            unique=True,
            sqlite_where=text("user_id IS NULL"),
            postgresql_where=text("user_id IS NULL"),
        ),
    )


__all__ = ["AlertPreference"]
