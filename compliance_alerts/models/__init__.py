import importlib

from compliance_alerts.models.alert import Alert
from compliance_alerts.models.alert_preferences import AlertPreference
from compliance_alerts.models.audit_log import AlertAuditLog
from compliance_alerts.models.deadline import Deadline
from compliance_alerts.models.escalation import AlertEscalation
from compliance_alerts.models.job_log import JobLog
from compliance_alerts.models.notification import Notification
from compliance_alerts.models.rate_limit import RateLimitCounter


def import_all_models() -> None:
    for module_name in (
        "compliance_alerts.models.alert",
        "compliance_alerts.models.alert_preferences",
        "compliance_alerts.models.audit_log",
        "compliance_alerts.models.deadline",
        "compliance_alerts.models.escalation",
        "compliance_alerts.models.job_log",
        "compliance_alerts.models.notification",
        "compliance_alerts.models.rate_limit",
    ):
        importlib.import_module(module_name)


__all__ = [
    "Alert",
    "AlertAuditLog",
    "AlertEscalation",
    "AlertPreference",
    "Deadline",
    "JobLog",
    "Notification",
    "RateLimitCounter",
    "import_all_models",
]
