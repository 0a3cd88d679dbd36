"""Failure taxonomy for scheduling, delivery and webhook ingestion.

Scheduling and dispatch failures are recorded on the alert row and never
raised to an end user. Only boundary calls (webhooks, user operations on
an alert) turn these into HTTP responses.
"""


class AlertEngineError(Exception):
    pass


class ConfigurationError(AlertEngineError):
    """No channel or no destination could be resolved; the alert is skipped."""


class DeliveryError(AlertEngineError):
    retryable = False

    def __init__(self, message: str, *, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class TransientDeliveryError(DeliveryError):
    """Timeout, 5xx or network error. Retried with backoff."""

    retryable = True


class PermanentDeliveryError(DeliveryError):
    """4xx-class rejection (bad recipient, bad template). Never retried."""


class TerminalDeliveryError(DeliveryError):
    """Every attempt of a transient failure was used up."""

    def __init__(self, message: str, *, attempts: int, status_code=None):
        super().__init__(message, status_code=status_code)
        self.attempts = attempts


class DuplicateEventError(AlertEngineError):
    """A transition was requested for an alert already past that point."""

    def __init__(self, alert_id, current_status: str, requested: str):
        super().__init__(
            "Alert {} is {}; ignoring {}".format(alert_id, current_status, requested)
        )
        self.alert_id = alert_id
        self.current_status = current_status
        self.requested = requested


class EscalationSuppressedError(AlertEngineError):
    """Escalation is disabled for the owning preferences."""


class AlertNotFoundError(AlertEngineError):
    pass


class AlertStateError(AlertEngineError):
    """A user-initiated operation is not allowed in the alert's current state."""


class MalformedWebhookError(AlertEngineError):
    pass


class RateLimitExceeded(AlertEngineError):
    """The per-organization SMS budget for the current window is spent."""

    def __init__(self, message: str, *, used: int, limit: int, reset_at):
        super().__init__(message)
        self.used = used
        self.limit = limit
        self.reset_at = reset_at


__all__ = [
    "AlertEngineError",
    "AlertNotFoundError",
    "AlertStateError",
    "ConfigurationError",
    "DeliveryError",
    "DuplicateEventError",
    "EscalationSuppressedError",
    "MalformedWebhookError",
    "PermanentDeliveryError",
    "RateLimitExceeded",
    "TerminalDeliveryError",
    "TransientDeliveryError",
]
