"""Crisis alert state machine."""

from enum import Enum
from typing import Set


class AlertStatus(str, Enum):
    """Lifecycle states of a crisis alert."""

    # Initial
    DETECTED = "detected"

    # Escalation
    ESCALATED = "escalated"
    PROFESSIONAL_NOTIFIED = "professional_notified"

    # Terminal states
    RESOLVED = "resolved"
    TRANSFERRED = "transferred"


# Valid state transitions (forward only)
VALID_TRANSITIONS: dict[AlertStatus, Set[AlertStatus]] = {
    AlertStatus.DETECTED: {
        AlertStatus.ESCALATED,
        AlertStatus.PROFESSIONAL_NOTIFIED,
        AlertStatus.RESOLVED,
        AlertStatus.TRANSFERRED,
    },
    AlertStatus.ESCALATED: {
        AlertStatus.PROFESSIONAL_NOTIFIED,
        AlertStatus.RESOLVED,
        AlertStatus.TRANSFERRED,
    },
    AlertStatus.PROFESSIONAL_NOTIFIED: {
        AlertStatus.RESOLVED,
        AlertStatus.TRANSFERRED,
    },
    AlertStatus.RESOLVED: set(),  # Terminal state
    AlertStatus.TRANSFERRED: set(),  # Terminal state
}


def can_transition(from_state: AlertStatus, to_state: AlertStatus) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def get_valid_transitions(state: AlertStatus) -> Set[AlertStatus]:
    """Get all valid transitions from a state."""
    return VALID_TRANSITIONS.get(state, set())


def is_terminal_state(state: AlertStatus) -> bool:
    """Check if state is terminal (no further transitions)."""
    return state in {
        AlertStatus.RESOLVED,
        AlertStatus.TRANSFERRED,
    }


def is_escalated_state(state: AlertStatus) -> bool:
    """Check if state means a human has been (or is being) pulled in."""
    return state in {
        AlertStatus.ESCALATED,
        AlertStatus.PROFESSIONAL_NOTIFIED,
    }

