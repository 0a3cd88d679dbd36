from datetime import datetime, timezone
from typing import Optional

from compliance_alerts.core.constants import CHANNEL_IN_APP
from compliance_alerts.core.errors import PermanentDeliveryError
from compliance_alerts.models.notification import Notification
from compliance_alerts.services.channels.base import ChannelAdapter, OutboundMessage


class InAppAdapter(ChannelAdapter):
    """Writes the alert into the in-app inbox in the dispatching transaction."""

    channel = CHANNEL_IN_APP

    def __init__(self, session=None, clock=None):
        self.session = session
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def for_session(self, db) -> "InAppAdapter":
        return InAppAdapter(session=db, clock=self.clock)

    def deliver(self, destination: str, message: OutboundMessage) -> Optional[str]:
        if self.session is None:
            raise PermanentDeliveryError("in-app adapter is not bound to a session")
        if not destination:
            raise PermanentDeliveryError("in-app alert has no recipient")

        notification = Notification(
            org_id=message.org_id,
            user_id=destination,
            alert_id=message.alert_id,
            type="deadline_reminder",
            title=message.subject,
            message=message.text,
            urgency=message.urgency,
            data=dict(message.data),
            created_at=self.clock(),
        )
        self.session.add(notification)
        self.session.flush()
        return "notification:{}".format(notification.id)


__all__ = ["InAppAdapter"]
