from sqlalchemy import Column, Integer, String, UniqueConstraint

from compliance_alerts.database.base import Base
from compliance_alerts.database.types import UTCDateTime


class RateLimitCounter(Base):
    __tablename__ = "rate_limit_counters"

    id = Column(Integer, primary_key=True)
    scope_key = Column(String(160), nullable=False)
    window_start = Column(UTCDateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("scope_key", "window_start", name="uq_rate_limit_scope_window"),
    )


__all__ = ["RateLimitCounter"]
