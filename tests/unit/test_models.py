"""Tests for safety models."""

import pytest

from sparq_safety.safety.alert_state import AlertStatus
from sparq_safety.safety.models import (
    CrisisAlert,
    CrisisType,
    RiskCategory,
    RiskIndicator,
    SafetyAssessment,
    Severity,
    max_severity,
    parse_severity,
)


def indicator(category: RiskCategory, confidence: float) -> RiskIndicator:
    return RiskIndicator(category=category, confidence=confidence, description="test")


class TestSeverity:
    """Test the ordered severity scale."""

    def test_ordering(self):
        assert Severity.NONE < Severity.LOW < Severity.MEDIUM < Severity.HIGH < Severity.CRITICAL
        assert Severity.HIGH >= Severity.HIGH
        assert not Severity.CRITICAL <= Severity.HIGH

    def test_max_severity(self):
        assert max_severity([Severity.LOW, Severity.CRITICAL, Severity.MEDIUM]) == Severity.CRITICAL
        assert max_severity([]) == Severity.NONE

    @pytest.mark.parametrize("value,expected", [
        ("high", Severity.HIGH),
        (" CRITICAL ", Severity.CRITICAL),
        ("safe", Severity.NONE),
        ("caution", Severity.LOW),
        ("concern", Severity.MEDIUM),
        ("crisis", Severity.HIGH),
        ("unknown", None),
    ])
    def test_parse_severity(self, value, expected):
        assert parse_severity(value) == expected

    def test_string_value(self):
        assert Severity.MEDIUM.value == "medium"
        assert Severity("low") is Severity.LOW


class TestSafetyAssessment:
    """Test derived crisis type."""

    def test_suicidal_ideation_takes_precedence(self):
        assessment = SafetyAssessment(
            user_id="u",
            severity=Severity.CRITICAL,
            confidence=0.9,
            indicators=[
                indicator(RiskCategory.SEVERE_DISTRESS, 0.95),
                indicator(RiskCategory.SUICIDAL_IDEATION, 0.7),
            ],
        )

        assert assessment.crisis_type == CrisisType.SUICIDAL_IDEATION
        assert assessment.primary_category == RiskCategory.SEVERE_DISTRESS

    def test_primary_category_maps_to_type(self):
        assessment = SafetyAssessment(
            user_id="u",
            severity=Severity.MEDIUM,
            confidence=0.8,
            indicators=[indicator(RiskCategory.SEVERE_DISTRESS, 0.8)],
        )

        assert assessment.crisis_type == CrisisType.MENTAL_HEALTH_CRISIS

    def test_no_indicators(self):
        concerning = SafetyAssessment(user_id="u", severity=Severity.MEDIUM, confidence=0.1)
        clean = SafetyAssessment(user_id="u", severity=Severity.NONE, confidence=0.95)

        assert concerning.crisis_type == CrisisType.MENTAL_HEALTH_CRISIS
        assert clean.crisis_type == CrisisType.OTHER

    def test_frozen(self):
        assessment = SafetyAssessment(user_id="u", severity=Severity.NONE, confidence=0.95)

        with pytest.raises(Exception):
            assessment.severity = Severity.HIGH

    def test_timestamp_is_utc(self):
        assessment = SafetyAssessment(user_id="u", severity=Severity.NONE, confidence=0.95)

        assert assessment.timestamp.utcoffset().total_seconds() == 0


class TestCrisisAlert:
    """Test alert helpers."""

    def test_active_until_terminal(self):
        alert = CrisisAlert(user_id="u", severity=Severity.HIGH, type=CrisisType.SELF_HARM)
        assert alert.is_active

        alert.status = AlertStatus.TRANSFERRED
        assert not alert.is_active

    def test_was_notified_for(self):
        alert = CrisisAlert(
            user_id="u",
            severity=Severity.CRITICAL,
            type=CrisisType.SELF_HARM,
            notified_severities=[Severity.HIGH],
        )

        assert alert.was_notified_for(Severity.HIGH)
        assert not alert.was_notified_for(Severity.CRITICAL)
