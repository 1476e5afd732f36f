"""
Safety Errors

Exception hierarchy for crisis detection and escalation.
"""

from typing import Optional


class SafetyError(Exception):
    """Base class for all safety subsystem errors."""
    pass


class ValidationFailure(SafetyError):
    """Raised when an evaluation request is missing required input.

    Raised before any assessment or alert is created.
    """

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class DetectionFailure(SafetyError):
    """Raised internally when extraction or classification breaks.

    Never surfaced to callers; converted to the fail-safe assessment.
    """
    pass


class AnalysisTimeout(SafetyError):
    """Deep analysis did not answer within its time budget."""
    pass


class EscalationDispatchFailure(SafetyError):
    """A professional notification could not be delivered."""

    def __init__(self, alert_id: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Notification for alert {alert_id} failed: {reason}")
        self.alert_id = alert_id
        self.reason = reason
        self.status_code = status_code


class AlertNotFound(SafetyError):
    """Raised when an alert id does not exist."""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert not found: {alert_id}")
        self.alert_id = alert_id


class InvalidAlertTransition(SafetyError):
    """Raised when a status change would move an alert backwards or out of a terminal state."""

    def __init__(self, alert_id: str, from_status: str, to_status: str):
        super().__init__(
            f"Alert {alert_id} cannot move from {from_status} to {to_status}"
        )
        self.alert_id = alert_id
        self.from_status = from_status
        self.to_status = to_status


class FollowUpNotFound(SafetyError):
    """Raised when an alert has no follow-up at the given position."""

    def __init__(self, alert_id: str, index: int):
        super().__init__(f"Follow-up {index} not found for alert {alert_id}")
        self.alert_id = alert_id
        self.index = index
