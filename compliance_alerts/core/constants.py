from pathlib import Path


PACKAGE_DIR = Path(__file__).resolve().parents[1]
PROJECT_ROOT = PACKAGE_DIR.parent
TEMPLATES_DIR = PACKAGE_DIR / "templates"

MS_PER_DAY = 86_400_000
SECONDS_PER_DAY = 86_400

# Most urgent first.
URGENCY_TIERS = ("critical", "high", "medium", "early")

CHANNEL_EMAIL = "email"
CHANNEL_SMS = "sms"
CHANNEL_IN_APP = "in_app"
CHANNELS = (CHANNEL_EMAIL, CHANNEL_SMS, CHANNEL_IN_APP)

STATUS_SCHEDULED = "scheduled"
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"
STATUS_ACKNOWLEDGED = "acknowledged"
STATUS_CANCELLED = "cancelled"
ALERT_STATUSES = (
    STATUS_SCHEDULED,
    STATUS_SENT,
    STATUS_DELIVERED,
    STATUS_FAILED,
    STATUS_ACKNOWLEDGED,
    STATUS_CANCELLED,
)
TERMINAL_STATUSES = (STATUS_FAILED, STATUS_ACKNOWLEDGED, STATUS_CANCELLED)

# Partial unique indexes on alerts: planned alerts by schedule key, escalation alerts by source.
PLANNED_KEY_WHERE = "status != 'cancelled' AND escalated_from_id IS NULL"
ESCALATION_KEY_WHERE = "escalated_from_id IS NOT NULL"

ACK_EMAIL_LINK = "email_link"
ACK_SMS_REPLY = "sms_reply"
ACK_IN_APP_BUTTON = "in_app_button"
ACK_METHODS = (ACK_EMAIL_LINK, ACK_SMS_REPLY, ACK_IN_APP_BUTTON)

AUDIT_ACTIONS = (
    "scheduled",
    "sent",
    "delivered",
    "failed",
    "acknowledged",
    "snoozed",
    "cancelled",
    "escalated",
)

SMS_ACK_KEYWORDS = ("DONE", "ACK")

ORG_INBOX = "*"

DEFAULT_PREFERENCES = {
    "early_channels": [CHANNEL_EMAIL],
    "medium_channels": [CHANNEL_EMAIL, CHANNEL_IN_APP],
    "high_channels": [CHANNEL_EMAIL, CHANNEL_SMS, CHANNEL_IN_APP],
    "critical_channels": [CHANNEL_EMAIL, CHANNEL_SMS, CHANNEL_IN_APP],
    "alert_days": [30, 14, 7, 3, 1, 0],
    "escalation_enabled": True,
    "escalation_contacts": [],
}
