import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from compliance_alerts.core.dates import ensure_utc
from compliance_alerts.core.errors import RateLimitExceeded
from compliance_alerts.models.rate_limit import RateLimitCounter

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def window_start(now: datetime, window_seconds: int) -> datetime:
    elapsed = int((ensure_utc(now) - _EPOCH).total_seconds())
    return _EPOCH + timedelta(seconds=elapsed - elapsed % window_seconds)


class SqlRateLimiter:
    """Fixed-window counter shared by every dispatcher through the database."""

    def __init__(self, *, limit: int, window_seconds: int, prefix: str = "sms"):
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix

    @classmethod
    def for_sms(cls, settings):
        return cls(
            limit=settings.SMS_RATE_LIMIT_PER_ORG,
            window_seconds=settings.SMS_RATE_LIMIT_WINDOW_SECONDS,
        )

    def scope_key(self, org_id: str) -> str:
        return "{}:{}".format(self.prefix, org_id)

    def _increment(self, db, key: str, start: datetime) -> bool:
        stmt = (
            update(RateLimitCounter)
            .where(
                RateLimitCounter.scope_key == key,
                RateLimitCounter.window_start == start,
                RateLimitCounter.count < self.limit,
            )
            .values(count=RateLimitCounter.count + 1)
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount == 1

    def _current(self, db, key: str, start: datetime):
        stmt = select(RateLimitCounter.count).where(
            RateLimitCounter.scope_key == key,
            RateLimitCounter.window_start == start,
        )
        return db.execute(stmt).scalar_one_or_none()

    def hit(self, db, org_id: str, *, now: datetime) -> int:
        """Consume one unit for ``org_id``; returns the units left in the window."""
        # A non-positive limit disables the check.
        if self.limit <= 0:
            return 0
        key = self.scope_key(org_id)
        start = window_start(now, self.window_seconds)

        if self._increment(db, key, start):
            return self.limit - (self._current(db, key, start) or 0)

        used = self._current(db, key, start)
        if used is None:
            try:
                with db.begin_nested():
                    db.add(RateLimitCounter(scope_key=key, window_start=start, count=1))
                    db.flush()
                return self.limit - 1
            except IntegrityError:
                # Lost the race to create the window row.
                if self._increment(db, key, start):
                    return self.limit - (self._current(db, key, start) or 0)
                used = self._current(db, key, start) or self.limit

        reset_at = start + timedelta(seconds=self.window_seconds)
        logger.warning(
            "SMS rate limit reached for org %s (%s/%s)",
            org_id,
            used,
            self.limit,
            extra={"org_id": org_id},
        )
        raise RateLimitExceeded(
            "rate limit exceeded for {}: {}/{}".format(key, used, self.limit),
            used=used,
            limit=self.limit,
            reset_at=reset_at,
        )


__all__ = ["SqlRateLimiter", "window_start"]
