"""Tests for the crisis audit trail."""

import pytest

from sparq_safety.safety.audit_logger import (
    AuditEventType,
    AuditLogger,
    AuditQuery,
    AuditSeverity,
)


class TestAuditLogger:
    """Test audit logging and the hash chain."""

    @pytest.fixture
    def audit(self):
        return AuditLogger(log_to_stdout=False)

    def test_hash_chain_links_events(self, audit):
        first = audit.log_crisis_detected("user-1", "alert-1", "self_harm", "high")
        second = audit.log_notification("alert-1", "high", delivered=True, attempts=1)

        assert first.previous_hash == "genesis"
        assert second.previous_hash == first.event_hash
        assert audit.verify_chain_integrity() == (True, None)

    def test_tampering_detected(self, audit):
        audit.log_crisis_detected("user-1", "alert-1", "self_harm", "high")
        event = audit.log_status_change(
            AuditEventType.CRISIS_RESOLVED, "user-1", "alert-1", "escalated", "resolved"
        )

        event.outcome = "failure"

        valid, error = audit.verify_chain_integrity()
        assert not valid
        assert "event 1" in error

    def test_chain_disabled(self):
        audit = AuditLogger(enable_hash_chain=False, log_to_stdout=False)

        event = audit.log_detection_failed("user-1", "boom")

        assert event.event_hash is None
        assert audit.verify_chain_integrity() == (True, None)

    def test_query_filters(self, audit):
        audit.log_crisis_detected("user-1", "alert-1", "self_harm", "high")
        audit.log_crisis_detected("user-2", "alert-2", "other", "low")
        audit.log_notification("alert-1", "high", delivered=False, attempts=1, error="503")

        by_user = audit.query(AuditQuery(user_id="user-1"))
        failures = audit.query(AuditQuery(outcome="failure"))
        by_type = audit.query(
            AuditQuery(alert_id="alert-1", event_types=[AuditEventType.NOTIFICATION_FAILED])
        )

        assert len(by_user) == 1
        assert [e.alert_id for e in failures] == ["alert-1"]
        assert by_type[0].error_message == "503"

    def test_query_limit(self, audit):
        for i in range(5):
            audit.log_detection_failed(f"user-{i}", "boom")

        assert len(audit.query(AuditQuery(limit=2))) == 2

    def test_count(self, audit):
        audit.log_manual_intervention("alert-1", "user-1", "webhook down")
        audit.log_manual_intervention("alert-2", "user-2", "webhook down")

        assert audit.count(AuditEventType.MANUAL_INTERVENTION_REQUIRED) == 2
        assert audit.count(AuditEventType.CRISIS_DETECTED) == 0

    @pytest.mark.parametrize("severity,expected", [
        ("critical", AuditSeverity.CRITICAL),
        ("high", AuditSeverity.CRITICAL),
        ("medium", AuditSeverity.WARNING),
    ])
    def test_crisis_detected_severity(self, audit, severity, expected):
        event = audit.log_crisis_detected("user-1", "alert-1", "other", severity)

        assert event.severity == expected

    def test_assessment_never_carries_text(self, audit):
        event = audit.log_assessment(
            "user-1", "assessment-1", "medium", ["severe_distress"], requires_review=False
        )

        assert set(event.details) == {"assessment_id", "severity", "categories", "requires_review"}
        assert event.to_dict()["event_type"] == "assessment_recorded"

    def test_events_capped_and_chain_still_valid(self):
        audit = AuditLogger(max_events=3, log_to_stdout=False)

        for i in range(5):
            audit.log_crisis_detected("user-1", f"alert-{i}", "self_harm", "high")

        events = audit.query(AuditQuery())
        assert sorted(e.alert_id for e in events) == ["alert-2", "alert-3", "alert-4"]
        assert audit.verify_chain_integrity() == (True, None)
