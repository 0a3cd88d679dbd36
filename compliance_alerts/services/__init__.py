from compliance_alerts.services.alert_scheduler import (
    handle_deadline_event,
    reschedule_for_preferences,
    run_scheduling_pass,
    schedule_deadline,
)
from compliance_alerts.services.dispatcher import dispatch_due_alerts
from compliance_alerts.services.escalation import escalate_alert, escalate_unacknowledged
from compliance_alerts.services.preferences import resolve_preferences, save_preferences

__all__ = [
    "dispatch_due_alerts",
    "escalate_alert",
    "escalate_unacknowledged",
    "handle_deadline_event",
    "reschedule_for_preferences",
    "resolve_preferences",
    "run_scheduling_pass",
    "save_preferences",
    "schedule_deadline",
]
