"""
Safety History Tracking

Keeps a rolling window of assessments per user and correlates each new
assessment with recent ones. An escalating pattern forces human review;
repeated concern-level assessments put the user under enhanced
monitoring, which makes every later utterance eligible for deep analysis.
"""

import logging
from datetime import timedelta

from sparq_safety.infra.redis import KeyedLock, MonitoringFlagStore
from sparq_safety.safety.models import SafetyAssessment, Severity
from sparq_safety.safety.persistence import Persistence

logger = logging.getLogger(__name__)

ESCALATION_ACTION = "Enhanced monitoring due to escalating pattern"


def is_escalating(severities: list[Severity], pattern_length: int = 3) -> bool:
    """
    Check whether the last ``pattern_length`` severities never decrease.

    A run that stays at NONE is not an escalation.
    """
    if len(severities) < pattern_length:
        return False
    recent = severities[-pattern_length:]
    if recent[-1] == Severity.NONE:
        return False
    return all(earlier <= later for earlier, later in zip(recent, recent[1:]))


class HistoryTracker:
    """
    Per-user assessment history with pattern detection.

    All mutation of a user's window happens under that user's lock, so
    concurrent evaluations for one user are correlated in order.

    Usage:
        tracker = HistoryTracker(persistence, locks, monitoring)
        assessment = await tracker.record(assessment)
        if assessment.escalating_pattern:
            ...
    """

    def __init__(
        self,
        persistence: Persistence,
        locks: KeyedLock,
        monitoring: MonitoringFlagStore,
        window_size: int = 50,
        lookback: timedelta = timedelta(hours=24),
        pattern_length: int = 3,
        monitoring_threshold: int = 3,
        monitoring_ttl: timedelta = timedelta(hours=72),
    ):
        self.persistence = persistence
        self.locks = locks
        self.monitoring = monitoring
        self.window_size = window_size
        self.lookback = lookback
        self.pattern_length = pattern_length
        self.monitoring_threshold = monitoring_threshold
        self.monitoring_ttl = monitoring_ttl

    async def record(self, assessment: SafetyAssessment) -> SafetyAssessment:
        """
        Correlate an assessment with the user's history and append it.

        Args:
            assessment: Freshly classified assessment

        Returns:
            The assessment, with requires_review and escalating_pattern
            set when the history shows escalation
        """
        async with self.locks.hold("history", assessment.user_id):
            history = await self.persistence.load_history(
                assessment.user_id, self.window_size
            )
            recent = self._within_lookback(history, assessment)

            severities = [entry.severity for entry in recent] + [assessment.severity]
            if is_escalating(severities, self.pattern_length):
                logger.warning(
                    f"Escalating pattern for user={assessment.user_id}: "
                    f"{[s.value for s in severities[-self.pattern_length:]]}"
                )
                actions = list(assessment.recommended_actions)
                if ESCALATION_ACTION not in actions:
                    actions.append(ESCALATION_ACTION)
                assessment = assessment.model_copy(
                    update={
                        "requires_review": True,
                        "escalating_pattern": True,
                        "reasoning": _append_reason(
                            assessment.reasoning, "Escalating pattern in recent history"
                        ),
                        "recommended_actions": actions,
                    }
                )

            concerns = sum(
                1 for s in severities if s >= Severity.MEDIUM
            )
            if concerns > self.monitoring_threshold:
                await self.monitoring.set_flag(
                    assessment.user_id,
                    self.monitoring_ttl,
                    f"{concerns} concern-level assessments within {self.lookback}",
                )

            await self.persistence.append_to_history(
                assessment.user_id, assessment, self.window_size
            )

        return assessment

    async def get_history(self, user_id: str) -> list[SafetyAssessment]:
        """Return the user's window, oldest first."""
        return await self.persistence.load_history(user_id, self.window_size)

    async def is_under_enhanced_monitoring(self, user_id: str) -> bool:
        return await self.monitoring.is_flagged(user_id)

    def _within_lookback(
        self,
        history: list[SafetyAssessment],
        current: SafetyAssessment,
    ) -> list[SafetyAssessment]:
        cutoff = current.timestamp - self.lookback
        return [entry for entry in history if entry.timestamp >= cutoff]


def _append_reason(reasoning: str, reason: str) -> str:
    return f"{reasoning}; {reason}" if reasoning else reason
