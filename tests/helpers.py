from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from compliance_alerts.config import Settings
from compliance_alerts.core.constants import CHANNEL_EMAIL, CHANNEL_SMS
from compliance_alerts.database.base import Base
from compliance_alerts.models import import_all_models
from compliance_alerts.models.alert import Alert
from compliance_alerts.models.deadline import Deadline
from compliance_alerts.services.channels.base import ChannelAdapter
from compliance_alerts.services.preferences import PreferenceSet


def utc(year, month, day, hour=0, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def make_session_factory():
    import_all_models()
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def make_settings(**overrides):
    values = dict(
        DATABASE_URL="sqlite://",
        DELIVERY_MAX_ATTEMPTS=3,
        DELIVERY_BACKOFF_SECONDS="1,2,4",
        DISPATCH_MAX_WORKERS=1,
        DISPATCH_BATCH_SIZE=100,
        SMS_RATE_LIMIT_PER_ORG=0,
        PUBLIC_BASE_URL="https://alerts.example.com",
    )
    values.update(overrides)
    return Settings(**values)


def add_deadline(db, deadline_id="dl-1", **values):
    fields = dict(
        org_id="org-1",
        title="Quarterly VAT return",
        due_at=utc(2025, 6, 20),
        assignee_id="user-1",
        assignee_email="owner@example.com",
    )
    fields.update(values)
    deadline = Deadline(id=deadline_id, **fields)
    db.add(deadline)
    db.flush()
    return deadline


def add_alert(db, deadline, **values):
    fields = dict(
        deadline_id=deadline.id,
        org_id=deadline.org_id,
        user_id=deadline.assignee_id,
        destination="owner@example.com",
        channel=CHANNEL_EMAIL,
        scheduled_for=utc(2025, 6, 19),
        scheduled_urgency="high",
        status="scheduled",
        retry_count=0,
    )
    fields.update(values)
    alert = Alert(**fields)
    db.add(alert)
    db.flush()
    return alert


def preference_set(**values):
    fields = dict(
        org_id="org-1",
        user_id="user-1",
        early_channels=(),
        medium_channels=(),
        high_channels=(CHANNEL_EMAIL,),
        critical_channels=(CHANNEL_EMAIL, CHANNEL_SMS),
        alert_days=(7, 1, 0),
        escalation_enabled=True,
        escalation_contacts=(),
        phone_number="+15551234567",
    )
    fields.update(values)
    return PreferenceSet(**fields)


class ScriptedAdapter(ChannelAdapter):
    """Plays back a script: a string is a provider id, an exception is raised."""

    def __init__(self, channel, script=()):
        self.channel = channel
        self.script = list(script)
        self.calls = []

    def deliver(self, destination, message):
        self.calls.append((destination, message))
        if self.script:
            step = self.script.pop(0)
        else:
            step = "{}-{}".format(self.channel, len(self.calls))
        if isinstance(step, Exception):
            raise step
        return step


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)
