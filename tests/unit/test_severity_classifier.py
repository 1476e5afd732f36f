"""Tests for severity classification."""

import pytest

from sparq_safety.safety.models import (
    DeepAnalysisOpinion,
    EvaluationContext,
    RiskCategory,
    RiskIndicator,
    Severity,
)
from sparq_safety.safety.severity_classifier import (
    CLEAN_CONFIDENCE,
    FAIL_SAFE_CONFIDENCE,
    SeverityClassifier,
    fail_safe_result,
)


def indicator(category: RiskCategory, confidence: float = 0.8) -> RiskIndicator:
    return RiskIndicator(category=category, confidence=confidence, description="test")


class TestSeverityClassifier:
    """Test indicator-to-severity classification."""

    @pytest.fixture
    def classifier(self):
        return SeverityClassifier()

    def test_no_indicators(self, classifier):
        result = classifier.classify([])

        assert result.severity == Severity.NONE
        assert result.confidence == CLEAN_CONFIDENCE
        assert not result.requires_immediate_intervention
        assert not result.requires_review
        assert result.recommended_actions == []

    @pytest.mark.parametrize("category,expected", [
        (RiskCategory.SUICIDAL_IDEATION, Severity.CRITICAL),
        (RiskCategory.SELF_HARM, Severity.HIGH),
        (RiskCategory.DOMESTIC_VIOLENCE, Severity.HIGH),
        (RiskCategory.SUBSTANCE_ABUSE, Severity.MEDIUM),
        (RiskCategory.SEVERE_DISTRESS, Severity.MEDIUM),
        (RiskCategory.OTHER, Severity.LOW),
    ])
    def test_category_table(self, classifier, category, expected):
        assert classifier.classify([indicator(category)]).severity == expected

    def test_suicidal_ideation_is_immediate(self, classifier):
        result = classifier.classify([indicator(RiskCategory.SUICIDAL_IDEATION, 0.95)])

        assert result.severity == Severity.CRITICAL
        assert result.requires_immediate_intervention
        assert result.requires_review
        assert result.confidence == 0.95

    def test_highest_category_wins(self, classifier):
        result = classifier.classify([
            indicator(RiskCategory.OTHER),
            indicator(RiskCategory.DOMESTIC_VIOLENCE),
            indicator(RiskCategory.SEVERE_DISTRESS),
        ])

        assert result.severity == Severity.HIGH
        assert result.requires_review
        assert not result.requires_immediate_intervention

    def test_medium_does_not_require_review(self, classifier):
        result = classifier.classify([indicator(RiskCategory.SEVERE_DISTRESS)])

        assert result.severity == Severity.MEDIUM
        assert not result.requires_review

    def test_crisis_context_forces_critical(self, classifier):
        result = classifier.classify([], context=EvaluationContext.CRISIS)

        assert result.severity == Severity.CRITICAL
        assert result.requires_immediate_intervention

    def test_opinion_raises_severity(self, classifier):
        opinion = DeepAnalysisOpinion(severity=Severity.HIGH, confidence=0.85)

        result = classifier.classify([indicator(RiskCategory.OTHER, 0.5)], opinion=opinion)

        assert result.severity == Severity.HIGH
        assert result.confidence == 0.85
        assert result.deep_analysis_used

    def test_opinion_never_lowers_severity(self, classifier):
        """Severity is a maximum, never an average."""
        opinion = DeepAnalysisOpinion(severity=Severity.NONE, confidence=0.99)

        result = classifier.classify(
            [indicator(RiskCategory.SUICIDAL_IDEATION, 0.95)], opinion=opinion
        )

        assert result.severity == Severity.CRITICAL
        assert result.confidence == 0.95

    def test_opinion_requesting_intervention_forces_review(self, classifier):
        opinion = DeepAnalysisOpinion(
            severity=Severity.MEDIUM,
            confidence=0.6,
            requires_intervention=True,
            recommended_actions=["Seek professional counseling"],
        )

        result = classifier.classify([indicator(RiskCategory.SEVERE_DISTRESS)], opinion=opinion)

        assert result.severity == Severity.MEDIUM
        assert result.requires_review
        assert "Seek professional counseling" in result.recommended_actions

    def test_recommended_actions_not_duplicated(self, classifier):
        opinion = DeepAnalysisOpinion(
            severity=Severity.CRITICAL,
            confidence=0.8,
            recommended_actions=["Provide crisis hotline numbers", "Contact crisis hotline"],
        )

        result = classifier.classify([], opinion=opinion)

        assert result.recommended_actions.count("Provide crisis hotline numbers") == 1
        assert "Contact crisis hotline" in result.recommended_actions

    def test_internal_error_fails_safe(self):
        """A broken severity table yields medium/review, not a crash."""
        classifier = SeverityClassifier(category_severity={})

        result = classifier.classify([indicator(RiskCategory.SUICIDAL_IDEATION)])

        assert result.severity == Severity.MEDIUM
        assert result.confidence == FAIL_SAFE_CONFIDENCE
        assert result.requires_review
        assert result.detection_failed

    def test_fail_safe_result(self):
        result = fail_safe_result("boom")

        assert result.severity == Severity.MEDIUM
        assert result.requires_review
        assert "boom" in result.reasoning

    def test_to_dict(self, classifier):
        data = classifier.classify([indicator(RiskCategory.SELF_HARM)]).to_dict()

        assert data["severity"] == "high"
        assert data["requires_review"] is True
