from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select

from compliance_alerts.core.constants import DEFAULT_PREFERENCES
from compliance_alerts.models.alert_preferences import AlertPreference

logger = logging.getLogger(__name__)

SOURCE_USER = "user"
SOURCE_ORGANIZATION = "organization"
SOURCE_DEFAULT = "default"

PREFERENCE_FIELDS = (
    "early_channels",
    "medium_channels",
    "high_channels",
    "critical_channels",
    "alert_days",
    "escalation_enabled",
    "escalation_contacts",
    "phone_number",
    "email_override",
)


@dataclass(frozen=True)
class PreferenceSet:
    """The one preference record that applies to an (org, user) pair."""

    org_id: str
    user_id: Optional[str] = None
    early_channels: tuple = ()
    medium_channels: tuple = ()
    high_channels: tuple = ()
    critical_channels: tuple = ()
    alert_days: tuple = ()
    escalation_enabled: bool = True
    escalation_contacts: tuple = ()
    phone_number: Optional[str] = None
    email_override: Optional[str] = None
    source: str = SOURCE_DEFAULT
    record_id: Optional[int] = field(default=None, compare=False)

    def channels_for(self, tier: str) -> tuple:
        return getattr(self, "{}_channels".format(tier))

    @classmethod
    def from_record(cls, record: AlertPreference, source: str) -> "PreferenceSet":
        return cls(
            org_id=record.org_id,
            user_id=record.user_id,
            early_channels=tuple(record.early_channels or ()),
            medium_channels=tuple(record.medium_channels or ()),
            high_channels=tuple(record.high_channels or ()),
            critical_channels=tuple(record.critical_channels or ()),
            alert_days=tuple(int(day) for day in record.alert_days or ()),
            escalation_enabled=bool(record.escalation_enabled),
            escalation_contacts=tuple(record.escalation_contacts or ()),
            phone_number=record.phone_number,
            email_override=record.email_override,
            source=source,
            record_id=record.id,
        )

    @classmethod
    def defaults(cls, org_id: str, user_id: Optional[str] = None) -> "PreferenceSet":
        return cls(
            org_id=org_id,
            user_id=user_id,
            early_channels=tuple(DEFAULT_PREFERENCES["early_channels"]),
            medium_channels=tuple(DEFAULT_PREFERENCES["medium_channels"]),
            high_channels=tuple(DEFAULT_PREFERENCES["high_channels"]),
            critical_channels=tuple(DEFAULT_PREFERENCES["critical_channels"]),
            alert_days=tuple(DEFAULT_PREFERENCES["alert_days"]),
            escalation_enabled=DEFAULT_PREFERENCES["escalation_enabled"],
            escalation_contacts=tuple(DEFAULT_PREFERENCES["escalation_contacts"]),
            source=SOURCE_DEFAULT,
        )


def get_preference_record(db, org_id: str, user_id: Optional[str]) -> Optional[AlertPreference]:
    stmt = select(AlertPreference).where(AlertPreference.org_id == org_id)
    if user_id is None:
        stmt = stmt.where(AlertPreference.user_id.is_(None))
    else:
        stmt = stmt.where(AlertPreference.user_id == user_id)
    return db.execute(stmt.limit(1)).scalar_one_or_none()


def resolve_preferences(db, org_id: str, user_id: Optional[str] = None) -> PreferenceSet:
    """User record, else the organization default, else the built-in defaults."""
    if user_id is not None:
        record = get_preference_record(db, org_id, user_id)
        if record is not None:
            return PreferenceSet.from_record(record, SOURCE_USER)
    record = get_preference_record(db, org_id, None)
    if record is not None:
        return PreferenceSet.from_record(record, SOURCE_ORGANIZATION)
    return PreferenceSet.defaults(org_id, user_id)


def save_preferences(
    db,
    org_id: str,
    user_id: Optional[str],
    values: dict,
    *,
    now: datetime,
    partial: bool = False,
) -> AlertPreference:
    """Create or update the record for exactly this (org, user) scope.

    With ``partial`` only the given fields change; a new record starts
    from the currently resolved preferences so a PATCH never silently
    drops inherited settings.
    """
    unknown = set(values) - set(PREFERENCE_FIELDS)
    if unknown:
        raise ValueError("unknown preference fields: {}".format(", ".join(sorted(unknown))))

    record = get_preference_record(db, org_id, user_id)
    if record is None:
        base = resolve_preferences(db, org_id, user_id) if partial else PreferenceSet.defaults(org_id, user_id)
        record = AlertPreference(org_id=org_id, user_id=user_id, created_at=now)
        for name in PREFERENCE_FIELDS:
            value = getattr(base, name)
            setattr(record, name, list(value) if isinstance(value, tuple) else value)
        db.add(record)
    else:
        record.updated_at = now

    for name, value in values.items():
        if isinstance(value, (list, tuple)):
            value = list(value)
        setattr(record, name, value)
    db.flush()

    logger.info(
        "Saved alert preferences for org %s user %s",
        org_id,
        user_id or "<org default>",
        extra={"org_id": org_id},
    )
    return record


__all__ = [
    "PREFERENCE_FIELDS",
    "PreferenceSet",
    "SOURCE_DEFAULT",
    "SOURCE_ORGANIZATION",
    "SOURCE_USER",
    "get_preference_record",
    "resolve_preferences",
    "save_preferences",
]
