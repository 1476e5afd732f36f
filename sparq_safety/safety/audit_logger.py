"""
Audit Logging Module

Tamper-evident audit trail for crisis detection and escalation. Every
decision that can put a person in front of a professional (or fail to)
is recorded here and mirrored to the application log.
"""

import hashlib
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    """Types of audit events."""

    # Detection Events
    ASSESSMENT_RECORDED = "assessment_recorded"
    DETECTION_FAILED = "detection_failed"
    DEEP_ANALYSIS_DEGRADED = "deep_analysis_degraded"
    ESCALATING_PATTERN = "escalating_pattern"

    # Crisis Events
    CRISIS_DETECTED = "crisis_detected"
    CRISIS_UPDATED = "crisis_updated"
    CRISIS_ESCALATED = "crisis_escalated"
    CRISIS_RESOLVED = "crisis_resolved"
    CRISIS_TRANSFERRED = "crisis_transferred"

    # Professional Escalation
    PROFESSIONAL_NOTIFIED = "professional_notified"
    NOTIFICATION_FAILED = "notification_failed"
    MANUAL_INTERVENTION_REQUIRED = "manual_intervention_required"
    FOLLOW_UPS_SCHEDULED = "follow_ups_scheduled"

    # Safety Plans
    SAFETY_PLAN_CREATED = "safety_plan_created"
    SAFETY_PLAN_UPDATED = "safety_plan_updated"

    # Follow-ups & Resources
    FOLLOW_UP_COMPLETED = "follow_up_completed"
    FOLLOW_UP_MISSED = "follow_up_missed"
    RESOURCE_ACCESSED = "resource_accessed"

    # Request Events
    VALIDATION_FAILED = "validation_failed"
    TRANSITION_REJECTED = "transition_rejected"


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class AuditEvent:
    """Individual audit event record."""

    id: UUID
    timestamp: datetime
    event_type: AuditEventType
    severity: AuditSeverity

    # Subject
    user_id: Optional[str] = None
    couple_id: Optional[str] = None
    alert_id: Optional[str] = None

    # Event details
    action: str = ""
    details: dict = field(default_factory=dict)

    # Outcome
    outcome: str = "success"  # success, failure, degraded
    error_message: Optional[str] = None

    # Integrity
    previous_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def compute_hash(self, previous_hash: str = "") -> str:
        """Compute hash for tamper detection."""
        data = {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "user_id": self.user_id,
            "alert_id": self.alert_id,
            "action": self.action,
            "outcome": self.outcome,
            "previous_hash": previous_hash,
        }
        content = json.dumps(data, sort_keys=True)
        return hashlib.sha256(content.encode()).hexdigest()

    def to_dict(self) -> dict:
        """Convert to dictionary for storage/transmission."""
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "couple_id": self.couple_id,
            "alert_id": self.alert_id,
            "action": self.action,
            "details": self.details,
            "outcome": self.outcome,
            "error_message": self.error_message,
            "event_hash": self.event_hash,
        }


@dataclass
class AuditQuery:
    """Query parameters for searching audit logs."""

    user_id: Optional[str] = None
    alert_id: Optional[str] = None
    event_types: Optional[list[AuditEventType]] = None
    outcome: Optional[str] = None
    limit: int = 100


# ==================================
# Audit Logger Class
# ==================================

class AuditLogger:
    """
    Crisis audit logger with hash chaining.

    In production, events should also be shipped to append-only storage.

    Usage:
        audit = AuditLogger()
        audit.log_crisis_detected(
            user_id="user_456",
            alert_id="alert_1",
            crisis_type="suicidal_ideation",
            severity="critical",
        )
    """

    def __init__(
        self,
        enable_hash_chain: bool = True,
        log_to_stdout: bool = True,
        max_events: int = 10_000,
    ):
        """
        Initialize Audit Logger.

        Args:
            enable_hash_chain: Enable tamper-evident hash chaining
            log_to_stdout: Also log to the application log
            max_events: Events kept in memory; the oldest are dropped first
        """
        self.enable_hash_chain = enable_hash_chain
        self.log_to_stdout = log_to_stdout

        self._events: deque[AuditEvent] = deque(maxlen=max_events)
        self._last_hash: str = "genesis"

    def log(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity,
        action: str,
        user_id: Optional[str] = None,
        couple_id: Optional[str] = None,
        alert_id: Optional[str] = None,
        details: Optional[dict] = None,
        outcome: str = "success",
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        """
        Log an audit event.

        Args:
            event_type: Type of event
            severity: Severity level
            action: Description of action taken
            user_id: User the event concerns
            couple_id: Couple the user belongs to
            alert_id: Alert the event concerns
            details: Additional event details (never raw user text)
            outcome: Result of action
            error_message: Error details if failed

        Returns:
            Created AuditEvent
        """
        event = AuditEvent(
            id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            event_type=event_type,
            severity=severity,
            user_id=user_id,
            couple_id=couple_id,
            alert_id=alert_id,
            action=action,
            details=details or {},
            outcome=outcome,
            error_message=error_message,
        )

        # Compute hash chain
        if self.enable_hash_chain:
            event.previous_hash = self._last_hash
            event.event_hash = event.compute_hash(self._last_hash)
            self._last_hash = event.event_hash

        self._events.append(event)

        if self.log_to_stdout:
            log_level = getattr(logging, severity.value.upper(), logging.INFO)
            logger.log(
                log_level,
                f"AUDIT: {event_type.value} | {action} | "
                f"user={user_id} | alert={alert_id} | outcome={outcome}"
            )

        return event

    # ==================================
    # Convenience Methods - Detection Events
    # ==================================

    def log_assessment(
        self,
        user_id: str,
        assessment_id: str,
        severity: str,
        categories: list[str],
        requires_review: bool,
        **kwargs
    ) -> AuditEvent:
        """Log a completed assessment (categories only, no text)."""
        return self.log(
            event_type=AuditEventType.ASSESSMENT_RECORDED,
            severity=AuditSeverity.INFO if severity in ("none", "low") else AuditSeverity.WARNING,
            action=f"Assessment recorded: {severity}",
            user_id=user_id,
            details={
                "assessment_id": assessment_id,
                "severity": severity,
                "categories": categories,
                "requires_review": requires_review,
            },
            **kwargs
        )

    def log_detection_failed(self, user_id: str, reason: str, **kwargs) -> AuditEvent:
        """Log a detection failure that fell back to cautious review."""
        return self.log(
            event_type=AuditEventType.DETECTION_FAILED,
            severity=AuditSeverity.ERROR,
            action="Detection failed; fail-safe assessment used",
            user_id=user_id,
            outcome="degraded",
            error_message=reason,
            **kwargs
        )

    def log_deep_analysis_degraded(self, user_id: str, **kwargs) -> AuditEvent:
        """Log a deep analysis call that produced no opinion."""
        return self.log(
            event_type=AuditEventType.DEEP_ANALYSIS_DEGRADED,
            severity=AuditSeverity.WARNING,
            action="Deep analysis unavailable; rule-based result used",
            user_id=user_id,
            outcome="degraded",
            **kwargs
        )

    # ==================================
    # Convenience Methods - Crisis Events
    # ==================================

    def log_crisis_detected(
        self,
        user_id: str,
        alert_id: str,
        crisis_type: str = "",
        severity: str = "",
        **kwargs
    ) -> AuditEvent:
        """Log crisis detection event."""
        audit_severity = (
            AuditSeverity.CRITICAL if severity in ("critical", "high") else AuditSeverity.WARNING
        )
        return self.log(
            event_type=AuditEventType.CRISIS_DETECTED,
            severity=audit_severity,
            action=f"Crisis detected: {crisis_type} ({severity})",
            user_id=user_id,
            alert_id=alert_id,
            details={"crisis_type": crisis_type, "severity": severity},
            **kwargs
        )

    def log_status_change(
        self,
        event_type: AuditEventType,
        user_id: str,
        alert_id: str,
        from_status: str,
        to_status: str,
        note: Optional[str] = None,
        **kwargs
    ) -> AuditEvent:
        """Log an alert status transition."""
        return self.log(
            event_type=event_type,
            severity=AuditSeverity.CRITICAL
            if event_type == AuditEventType.CRISIS_ESCALATED
            else AuditSeverity.INFO,
            action=f"Alert {from_status} -> {to_status}",
            user_id=user_id,
            alert_id=alert_id,
            details={"from": from_status, "to": to_status, "note": note},
            **kwargs
        )

    def log_notification(
        self,
        alert_id: str,
        severity: str,
        delivered: bool,
        attempts: int,
        error: Optional[str] = None,
        **kwargs
    ) -> AuditEvent:
        """Log a professional notification attempt."""
        return self.log(
            event_type=AuditEventType.PROFESSIONAL_NOTIFIED
            if delivered
            else AuditEventType.NOTIFICATION_FAILED,
            severity=AuditSeverity.INFO if delivered else AuditSeverity.ERROR,
            action="Professional notified" if delivered else "Professional notification failed",
            alert_id=alert_id,
            details={"severity": severity, "attempts": attempts},
            outcome="success" if delivered else "failure",
            error_message=error,
            **kwargs
        )

    def log_manual_intervention(
        self,
        alert_id: str,
        user_id: str,
        reason: str,
        **kwargs
    ) -> AuditEvent:
        """Log an alert handed to the manual-intervention queue."""
        return self.log(
            event_type=AuditEventType.MANUAL_INTERVENTION_REQUIRED,
            severity=AuditSeverity.CRITICAL,
            action="Automated escalation exhausted; manual intervention required",
            user_id=user_id,
            alert_id=alert_id,
            details={"reason": reason},
            outcome="failure",
            **kwargs
        )

    # ==================================
    # Query Methods
    # ==================================

    def query(self, query: AuditQuery) -> list[AuditEvent]:
        """
        Query audit events.

        Args:
            query: Query parameters

        Returns:
            List of matching AuditEvents
        """
        results = []

        for event in self._events:
            if query.user_id and event.user_id != query.user_id:
                continue
            if query.alert_id and event.alert_id != query.alert_id:
                continue
            if query.event_types and event.event_type not in query.event_types:
                continue
            if query.outcome and event.outcome != query.outcome:
                continue
            results.append(event)

        return results[:query.limit]

    def count(self, event_type: AuditEventType) -> int:
        """Number of events of a type."""
        return sum(1 for event in self._events if event.event_type == event_type)

    def verify_chain_integrity(self) -> tuple[bool, Optional[str]]:
        """
        Verify the integrity of the hash chain.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not self.enable_hash_chain:
            return True, None

        # The chain is verified from the oldest event still held
        previous_hash = self._events[0].previous_hash if self._events else "genesis"

        for i, event in enumerate(self._events):
            expected_hash = event.compute_hash(previous_hash)

            if event.event_hash != expected_hash:
                return False, f"Hash mismatch at event {i} (id={event.id})"

            if event.previous_hash != previous_hash:
                return False, f"Chain broken at event {i} (id={event.id})"

            previous_hash = event.event_hash

        return True, None
