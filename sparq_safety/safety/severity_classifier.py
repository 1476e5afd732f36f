"""
Severity Classification

Turns risk indicators (plus an optional deep-analysis opinion) into a
severity, an intervention flag and a confidence score.

Fail-safe contract: any internal error yields severity MEDIUM with
confidence 0.1 and requires_review=True. A crisis is never converted
into "no crisis" because something broke.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sparq_safety.safety.models import (
    DeepAnalysisOpinion,
    EvaluationContext,
    RiskCategory,
    RiskIndicator,
    Severity,
    max_severity,
)

logger = logging.getLogger(__name__)


# Base severity per indicator category
CATEGORY_SEVERITY: dict[RiskCategory, Severity] = {
    RiskCategory.SUICIDAL_IDEATION: Severity.CRITICAL,
    RiskCategory.SELF_HARM: Severity.HIGH,
    RiskCategory.DOMESTIC_VIOLENCE: Severity.HIGH,
    RiskCategory.SUBSTANCE_ABUSE: Severity.MEDIUM,
    RiskCategory.SEVERE_DISTRESS: Severity.MEDIUM,
    RiskCategory.OTHER: Severity.LOW,
}

# Confidence reported when nothing was found
CLEAN_CONFIDENCE = 0.95

FAIL_SAFE_SEVERITY = Severity.MEDIUM
FAIL_SAFE_CONFIDENCE = 0.1


# ==================================
# Recommended Actions
# ==================================

RECOMMENDED_ACTIONS: dict[Severity, list[str]] = {
    Severity.NONE: [],
    Severity.LOW: [
        "Continue monitoring",
        "Offer supportive resources",
    ],
    Severity.MEDIUM: [
        "Provide mental health resources",
        "Suggest professional counseling",
        "Schedule a check-in",
    ],
    Severity.HIGH: [
        "Provide crisis resources",
        "Connect with a crisis counselor",
        "Flag for human review",
    ],
    Severity.CRITICAL: [
        "Contact emergency services if in immediate danger",
        "Provide crisis hotline numbers",
        "Notify the on-call crisis professional",
    ],
}


@dataclass
class ClassificationResult:
    """Outcome of severity classification."""

    severity: Severity
    confidence: float
    requires_immediate_intervention: bool
    requires_review: bool
    reasoning: str = ""
    recommended_actions: list[str] = field(default_factory=list)
    deep_analysis_used: bool = False
    detection_failed: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "severity": self.severity.value,
            "confidence": self.confidence,
            "requires_immediate_intervention": self.requires_immediate_intervention,
            "requires_review": self.requires_review,
            "reasoning": self.reasoning,
            "recommended_actions": self.recommended_actions,
            "deep_analysis_used": self.deep_analysis_used,
            "detection_failed": self.detection_failed,
        }


def fail_safe_result(reason: str) -> ClassificationResult:
    """Cautious result used whenever detection cannot be trusted."""
    return ClassificationResult(
        severity=FAIL_SAFE_SEVERITY,
        confidence=FAIL_SAFE_CONFIDENCE,
        requires_immediate_intervention=False,
        requires_review=True,
        reasoning=f"Detection failed, defaulting to cautious review: {reason}",
        recommended_actions=[
            "Manual review required",
            "Provide general support resources",
        ],
        detection_failed=True,
    )


class SeverityClassifier:
    """
    Rule-based severity classifier.

    Severity is the maximum of the category table, a critical override
    for crisis context, and the deep-analysis opinion. It never averages
    down.

    Usage:
        classifier = SeverityClassifier()
        result = classifier.classify(indicators, context=EvaluationContext.GENERAL)
    """

    def __init__(self, category_severity: Optional[dict[RiskCategory, Severity]] = None):
        self.category_severity = (
            CATEGORY_SEVERITY if category_severity is None else category_severity
        )

    def classify(
        self,
        indicators: list[RiskIndicator],
        opinion: Optional[DeepAnalysisOpinion] = None,
        context: Optional[EvaluationContext] = None,
    ) -> ClassificationResult:
        """
        Classify indicators into a severity.

        Args:
            indicators: Output of the indicator extractor
            opinion: Deep-analysis second opinion, if one was obtained
            context: Where the text came from

        Returns:
            ClassificationResult (the fail-safe result on any error)
        """
        try:
            return self._classify(indicators, opinion, context)
        except Exception as e:
            logger.error(f"Severity classification failed: {e}", exc_info=True)
            return fail_safe_result(str(e))

    def _classify(
        self,
        indicators: list[RiskIndicator],
        opinion: Optional[DeepAnalysisOpinion],
        context: Optional[EvaluationContext],
    ) -> ClassificationResult:
        reasons = []

        rule_severity = max_severity(
            self.category_severity[indicator.category] for indicator in indicators
        )
        if indicators:
            categories = ", ".join(i.category.value for i in indicators)
            reasons.append(f"Indicators found: {categories}")

        candidates = [rule_severity]

        if context == EvaluationContext.CRISIS:
            candidates.append(Severity.CRITICAL)
            reasons.append("Evaluated in crisis context")

        if indicators:
            confidence = max(indicator.confidence for indicator in indicators)
        else:
            confidence = CLEAN_CONFIDENCE

        recommended = []
        if opinion is not None:
            if opinion.severity > max_severity(candidates):
                confidence = max(confidence, opinion.confidence)
                reasons.append(f"Deep analysis raised severity to {opinion.severity.value}")
            candidates.append(opinion.severity)
            recommended = opinion.recommended_actions

        severity = max_severity(candidates)
        recommended = _merge(RECOMMENDED_ACTIONS[severity], recommended)

        requires_review = severity >= Severity.HIGH or bool(
            opinion and opinion.requires_intervention
        )

        if not reasons:
            reasons.append("No risk indicators found")

        return ClassificationResult(
            severity=severity,
            confidence=round(confidence, 3),
            requires_immediate_intervention=severity == Severity.CRITICAL,
            requires_review=requires_review,
            reasoning="; ".join(reasons),
            recommended_actions=recommended,
            deep_analysis_used=opinion is not None,
        )


def _merge(first: list[str], second: list[str]) -> list[str]:
    merged = list(first)
    for item in second:
        if item not in merged:
            merged.append(item)
    return merged
