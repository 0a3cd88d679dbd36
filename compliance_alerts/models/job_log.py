from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, String, UniqueConstraint

from compliance_alerts.database.base import Base
from compliance_alerts.database.types import UTCDateTime


class JobLog(Base):
    __tablename__ = "job_logs"

    id = Column(Integer, primary_key=True)
    job_name = Column(String(80), nullable=False)
    # A date for daily jobs, the slot start for interval jobs.
    run_key = Column(String(40), nullable=False)
    status = Column(String(20), nullable=False, default="running")
    attempt = Column(Integer, nullable=False, default=1)

    started_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    finished_at = Column(UTCDateTime)
    last_heartbeat_at = Column(UTCDateTime)
    next_retry_at = Column(UTCDateTime)

    locked_by = Column(String(120))
    error_message = Column(String)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("job_name", "run_key", name="uq_job_logs_name_key"),
        Index("idx_job_logs_status_retry", "status", "next_retry_at"),
    )


__all__ = ["JobLog"]
