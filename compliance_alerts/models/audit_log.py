from datetime import datetime, timezone

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, event

from compliance_alerts.database.base import Base
from compliance_alerts.database.types import UTCDateTime


class AlertAuditLog(Base):
    __tablename__ = "alert_audit_log"

    id = Column(Integer, primary_key=True)
    alert_id = Column(Integer, ForeignKey("alerts.id"), nullable=False)
    org_id = Column(String(64), nullable=False)
    action = Column(String(20), nullable=False)
    details = Column(JSON)
    timestamp = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("idx_alert_audit_alert", "alert_id", "timestamp"),
        Index("idx_alert_audit_org", "org_id", "timestamp"),
    )


@event.listens_for(AlertAuditLog, "before_update")
def _reject_update(_mapper, _connection, target):
    raise RuntimeError("alert_audit_log is append-only (entry {})".format(target.id))


@event.listens_for(AlertAuditLog, "before_delete")
def _reject_delete(_mapper, _connection, target):
    raise RuntimeError("alert_audit_log is append-only (entry {})".format(target.id))


__all__ = ["AlertAuditLog"]
