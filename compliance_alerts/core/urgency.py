import math
from datetime import datetime

from compliance_alerts.core.constants import SECONDS_PER_DAY
from compliance_alerts.core.dates import ensure_utc

URGENCY_CRITICAL = "critical"
URGENCY_HIGH = "high"
URGENCY_MEDIUM = "medium"
URGENCY_EARLY = "early"

# Inclusive upper bounds, checked in order.
_THRESHOLDS = (
    (0, URGENCY_CRITICAL),
    (1, URGENCY_HIGH),
    (7, URGENCY_MEDIUM),
)

_RANK = {URGENCY_CRITICAL: 0, URGENCY_HIGH: 1, URGENCY_MEDIUM: 2, URGENCY_EARLY: 3}


def days_before(due_at: datetime, now: datetime) -> int:
    delta = ensure_utc(due_at) - ensure_utc(now)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def urgency_for_days(days: int) -> str:
    for upper_bound, tier in _THRESHOLDS:
        if days <= upper_bound:
            return tier
    return URGENCY_EARLY


def classify_urgency(due_at: datetime, now: datetime) -> str:
    return urgency_for_days(days_before(due_at, now))


def urgency_rank(tier: str) -> int:
    """0 is the most urgent tier."""
    return _RANK[tier]


def display_urgency(due_at: datetime, now: datetime) -> str:
    """Live urgency of a deadline for display.

    Independent of ``Alert.scheduled_urgency``, which is frozen when the
    alert is created.
    """
    return classify_urgency(due_at, now)


__all__ = [
    "URGENCY_CRITICAL",
    "URGENCY_EARLY",
    "URGENCY_HIGH",
    "URGENCY_MEDIUM",
    "classify_urgency",
    "days_before",
    "display_urgency",
    "urgency_for_days",
    "urgency_rank",
]
