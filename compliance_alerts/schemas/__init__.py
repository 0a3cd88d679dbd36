from compliance_alerts.schemas.alert import AlertList, AlertRead, AuditEntryRead, PassResult, SnoozeRequest
from compliance_alerts.schemas.deadline import DeadlineEvent, DeadlineEventResult, DeadlineSnapshot
from compliance_alerts.schemas.notification import NotificationRead
from compliance_alerts.schemas.preferences import (
    PreferencePatch,
    PreferenceRead,
    PreferenceSaveResult,
    PreferenceUpdate,
)

__all__ = [
    "AlertList",
    "AlertRead",
    "AuditEntryRead",
    "DeadlineEvent",
    "DeadlineEventResult",
    "DeadlineSnapshot",
    "NotificationRead",
    "PassResult",
    "PreferencePatch",
    "PreferenceRead",
    "PreferenceSaveResult",
    "PreferenceUpdate",
    "SnoozeRequest",
]
