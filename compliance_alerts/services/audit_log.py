from sqlalchemy import func, select

from compliance_alerts.core.constants import AUDIT_ACTIONS
from compliance_alerts.core.dates import ensure_utc
from compliance_alerts.models.audit_log import AlertAuditLog


def record_audit(db, alert, action, *, at, details=None) -> AlertAuditLog:
    """Append one audit entry for ``alert`` to the caller's transaction.

    The entry is never committed here; it lands (or rolls back) together
    with the transition it describes. Timestamps per alert never go
    backwards even if a caller passes an older clock reading.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError("unknown audit action: {}".format(action))
    db.flush()

    timestamp = ensure_utc(at)
    latest = db.execute(
        select(func.max(AlertAuditLog.timestamp)).where(AlertAuditLog.alert_id == alert.id)
    ).scalar()
    if latest is not None:
        latest = ensure_utc(latest)
        if latest > timestamp:
            timestamp = latest

    entry = AlertAuditLog(
        alert_id=alert.id,
        org_id=alert.org_id,
        action=action,
        details=details or None,
        timestamp=timestamp,
    )
    db.add(entry)
    return entry


def alert_history(db, alert_id: int) -> list[AlertAuditLog]:
    """Audit entries for one alert, most recent first."""
    stmt = (
        select(AlertAuditLog)
        .where(AlertAuditLog.alert_id == alert_id)
        .order_by(AlertAuditLog.timestamp.desc(), AlertAuditLog.id.desc())
    )
    return list(db.execute(stmt).scalars())


def org_audit_log(db, org_id: str, *, limit: int = 50, offset: int = 0) -> list[AlertAuditLog]:
    stmt = (
        select(AlertAuditLog)
        .where(AlertAuditLog.org_id == org_id)
        .order_by(AlertAuditLog.timestamp.desc(), AlertAuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.execute(stmt).scalars())


__all__ = ["alert_history", "org_audit_log", "record_audit"]
