from datetime import timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from compliance_alerts.core.dates import ensure_utc


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC on every backend."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


__all__ = ["UTCDateTime"]
