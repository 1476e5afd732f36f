"""Tests for the crisis coordinator."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from sparq_safety.safety.alert_state import AlertStatus
from sparq_safety.safety.audit_logger import AuditEventType
from sparq_safety.safety.coordinator import CRISIS_MESSAGES
from sparq_safety.safety.deep_analysis import AnalysisProvider
from sparq_safety.safety.errors import (
    AlertNotFound,
    FollowUpNotFound,
    InvalidAlertTransition,
    ValidationFailure,
)
from sparq_safety.safety.intervention_planner import EMERGENCY_ACTION, InterventionPlanner
from sparq_safety.safety.models import (
    AccessMethod,
    CrisisType,
    DeepAnalysisOpinion,
    EvaluationContext,
    FollowUpStatus,
    SafetyPlanUpdate,
    Severity,
)
from sparq_safety.safety.severity_classifier import FAIL_SAFE_CONFIDENCE

CLEAN = "We had a lovely dinner and talked about the trip"
LOW = "I feel completely alone"
MEDIUM = "I feel so hopeless"
HIGH = "My husband hit me last night"
CRITICAL = "I want to die"


class SlowProvider(AnalysisProvider):
    name = "slow"

    async def analyze(self, text, context):
        await asyncio.sleep(10)
        return DeepAnalysisOpinion(severity=Severity.CRITICAL, confidence=1.0)


class FixedProvider(AnalysisProvider):
    name = "fixed"

    def __init__(self, opinion):
        self.opinion = opinion
        self.calls = 0
        self.closed = False

    async def analyze(self, text, context):
        self.calls += 1
        return self.opinion

    async def close(self):
        self.closed = True


class TestEvaluate:
    """Test the evaluation pipeline end to end."""

    @pytest.mark.asyncio
    async def test_critical_notifies_before_returning(self, coordinator, notifier):
        evaluation = await coordinator.evaluate("user-1", "couple-1", CRITICAL)

        assert evaluation.severity == Severity.CRITICAL
        assert evaluation.requires_immediate_intervention
        assert evaluation.message == CRISIS_MESSAGES[Severity.CRITICAL]

        alert = evaluation.alert
        assert alert.status == AlertStatus.PROFESSIONAL_NOTIFIED
        assert alert.type == CrisisType.SUICIDAL_IDEATION
        assert not alert.notification_pending
        assert alert.notified_severities == [Severity.CRITICAL]
        assert alert.intervention_plan.immediate_actions[0] == EMERGENCY_ACTION
        assert [call[0] for call in notifier.calls] == [alert.id]

    @pytest.mark.asyncio
    async def test_critical_resources_start_with_lifeline(self, coordinator):
        evaluation = await coordinator.evaluate("user-1", None, CRITICAL)

        assert evaluation.resources[0].id == "us-988-lifeline"

    @pytest.mark.asyncio
    async def test_clean_text_creates_nothing(self, coordinator, notifier):
        evaluation = await coordinator.evaluate("user-1", "couple-1", CLEAN)

        assert evaluation.severity == Severity.NONE
        assert evaluation.alert is None
        assert evaluation.message == ""
        assert evaluation.resources  # fallback set is always present
        assert await coordinator.get_active_alerts("user-1") == []
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_escalating_history_requires_review(self, coordinator, audit):
        await coordinator.evaluate("user-1", None, CLEAN)
        second = await coordinator.evaluate("user-1", None, LOW)
        third = await coordinator.evaluate("user-1", None, MEDIUM)

        assert second.alert.status == AlertStatus.DETECTED
        assert third.requires_review
        assert third.assessment.escalating_pattern
        assert third.alert.id == second.alert.id
        assert third.alert.severity == Severity.MEDIUM
        assert third.alert.status == AlertStatus.ESCALATED
        assert third.alert.notification_pending
        assert audit.count(AuditEventType.ESCALATING_PATTERN) == 1

    @pytest.mark.asyncio
    async def test_one_alert_per_episode(self, coordinator, audit):
        first = await coordinator.evaluate("user-1", None, LOW)
        second = await coordinator.evaluate("user-1", None, HIGH)

        alert = second.alert
        assert alert.id == first.alert.id
        assert alert.severity == Severity.HIGH
        assert alert.type == CrisisType.DOMESTIC_VIOLENCE
        assert len(alert.assessment_ids) == 2
        assert {i.category.value for i in alert.indicators} == {"other", "domestic_violence"}
        assert len(await coordinator.get_active_alerts("user-1")) == 1
        assert audit.count(AuditEventType.CRISIS_DETECTED) == 1
        assert audit.count(AuditEventType.CRISIS_UPDATED) == 1

    @pytest.mark.asyncio
    async def test_severity_never_lowered(self, coordinator):
        await coordinator.evaluate("user-1", None, HIGH)
        later = await coordinator.evaluate("user-1", None, LOW)

        assert later.severity == Severity.LOW
        assert later.alert.severity == Severity.HIGH
        assert later.alert.status == AlertStatus.ESCALATED

    @pytest.mark.asyncio
    async def test_high_alert_follow_ups_anchored(self, coordinator):
        evaluation = await coordinator.evaluate("user-1", None, HIGH)

        alert = evaluation.alert
        schedule = alert.intervention_plan.follow_up_schedule
        assert alert.created_at == evaluation.assessment.timestamp
        assert schedule[0].relative_timeframe == "6 hours"
        assert schedule[0].scheduled_at == alert.created_at + timedelta(hours=6)
        assert schedule[1].scheduled_at == alert.created_at + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_jurisdiction_drives_resources(self, coordinator):
        evaluation = await coordinator.evaluate("user-1", None, HIGH, jurisdiction="CA-AB")

        assert evaluation.resources[0].id == "ca-ab-family-violence"
        assert evaluation.alert.jurisdiction == "CA-AB"

    @pytest.mark.asyncio
    async def test_crisis_context_is_critical(self, coordinator):
        evaluation = await coordinator.evaluate(
            "user-1", None, CLEAN, context=EvaluationContext.CRISIS
        )

        assert evaluation.severity == Severity.CRITICAL

    @pytest.mark.asyncio
    async def test_high_severity_adds_warning_signs(self, coordinator):
        await coordinator.evaluate("user-1", None, CRITICAL)

        plan = await coordinator.get_or_create_safety_plan("user-1")
        assert plan.warning_signs == ["stated intent to die"]
        assert plan.version == 2


class TestValidation:
    """Test request validation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id,text,context,field", [
        ("", CRITICAL, "general", "user_id"),
        (None, CRITICAL, "general", "user_id"),
        ("user-1", "   ", "general", "text"),
        ("user-1", None, "general", "text"),
        ("user-1", CRITICAL, "bogus", "context"),
    ])
    async def test_rejected(self, coordinator, audit, persistence, user_id, text, context, field):
        with pytest.raises(ValidationFailure) as exc_info:
            await coordinator.evaluate(user_id, None, text, context=context)

        assert exc_info.value.field == field
        assert audit.count(AuditEventType.VALIDATION_FAILED) == 1
        assert await persistence.list_active_alerts() == []

    @pytest.mark.asyncio
    async def test_context_string_accepted(self, coordinator):
        evaluation = await coordinator.evaluate("user-1", None, CLEAN, context="assessment")

        assert evaluation.assessment.context == EvaluationContext.ASSESSMENT


class TestDegradation:
    """Test behavior when components fail."""

    @pytest.mark.asyncio
    async def test_extractor_failure_fails_safe(self, coordinator, audit):
        coordinator.extractor = MagicMock()
        coordinator.extractor.extract.side_effect = RuntimeError("regex engine exploded")

        evaluation = await coordinator.evaluate("user-1", None, CRITICAL)

        assert evaluation.severity == Severity.MEDIUM
        assert evaluation.requires_review
        assert evaluation.assessment.detection_failed
        assert evaluation.assessment.confidence == FAIL_SAFE_CONFIDENCE
        assert evaluation.alert.status == AlertStatus.ESCALATED
        assert audit.count(AuditEventType.DETECTION_FAILED) == 1

    @pytest.mark.asyncio
    async def test_deep_analysis_timeout_keeps_rule_result(self, make_coordinator, audit):
        coordinator = make_coordinator(
            analysis_provider=SlowProvider(), deep_analysis_timeout_seconds=0.05
        )
        try:
            evaluation = await coordinator.evaluate("user-1", None, MEDIUM)
        finally:
            await coordinator.escalation.stop()

        assert evaluation.severity == Severity.MEDIUM
        assert not evaluation.assessment.deep_analysis_used
        assert audit.count(AuditEventType.DEEP_ANALYSIS_DEGRADED) == 1

    @pytest.mark.asyncio
    async def test_deep_analysis_raises_severity(self, make_coordinator):
        provider = FixedProvider(DeepAnalysisOpinion(severity=Severity.HIGH, confidence=0.85))
        coordinator = make_coordinator(analysis_provider=provider)
        try:
            evaluation = await coordinator.evaluate("user-1", None, MEDIUM)
        finally:
            await coordinator.escalation.stop()

        assert evaluation.severity == Severity.HIGH
        assert evaluation.assessment.deep_analysis_used
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_low_text_not_analyzed(self, make_coordinator):
        provider = FixedProvider(DeepAnalysisOpinion(severity=Severity.LOW, confidence=0.5))
        coordinator = make_coordinator(analysis_provider=provider)
        try:
            await coordinator.evaluate("user-1", None, LOW)
        finally:
            await coordinator.escalation.stop()

        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_enhanced_monitoring_sends_everything_to_analysis(self, make_coordinator):
        provider = FixedProvider(DeepAnalysisOpinion(severity=Severity.LOW, confidence=0.5))
        coordinator = make_coordinator(analysis_provider=provider)
        try:
            for _ in range(4):
                await coordinator.evaluate("user-1", None, MEDIUM)
            calls = provider.calls

            await coordinator.evaluate("user-1", None, LOW)
        finally:
            await coordinator.escalation.stop()

        assert calls == 4
        assert provider.calls == 5

    @pytest.mark.asyncio
    async def test_notification_failure_schedules_retry(self, coordinator, notifier):
        notifier.fail_times = 1

        evaluation = await coordinator.evaluate("user-1", None, CRITICAL)

        assert evaluation.alert.status == AlertStatus.PROFESSIONAL_NOTIFIED
        assert evaluation.alert.notification_pending
        assert coordinator.escalation.scheduled_retries == 1
        stats = await coordinator.get_crisis_stats()
        assert stats["pending_notifications"] == 1

    @pytest.mark.asyncio
    async def test_unsaved_critical_alert_still_pages(self, coordinator, persistence, notifier, audit):
        async def broken(alert):
            raise ConnectionError("database down")

        persistence.save_alert = broken

        evaluation = await coordinator.evaluate("user-1", None, CRITICAL)

        alert = evaluation.alert
        assert alert.status == AlertStatus.PROFESSIONAL_NOTIFIED
        assert not alert.notification_pending
        assert alert.professional_contacts == ["on-call"]
        assert len(notifier.calls) == 1
        assert notifier.calls[0][2]["persisted"] is False
        queue = await persistence.list_manual_interventions()
        assert [item.alert_id for item in queue] == [alert.id]
        assert "database down" in queue[0].reason
        assert audit.count(AuditEventType.MANUAL_INTERVENTION_REQUIRED) == 1

    @pytest.mark.asyncio
    async def test_unsaved_alert_with_failed_page_is_queued(self, coordinator, persistence, notifier):
        async def broken(alert):
            raise ConnectionError("database down")

        persistence.save_alert = broken
        notifier.fail_times = 1

        evaluation = await coordinator.evaluate("user-1", None, CRITICAL)

        assert evaluation.alert.notification_pending
        assert evaluation.alert.professional_contacts == []
        queue = await persistence.list_manual_interventions()
        assert len(queue) == 1
        assert "notification failed" in queue[0].reason

    @pytest.mark.asyncio
    async def test_unsaved_low_alert_not_paged(self, coordinator, persistence, notifier):
        async def broken(alert):
            raise ConnectionError("database down")

        persistence.save_alert = broken

        evaluation = await coordinator.evaluate("user-1", None, LOW)

        assert evaluation.alert is None
        assert notifier.calls == []
        assert await persistence.list_manual_interventions() == []

    @pytest.mark.asyncio
    async def test_synchronous_escalation_crash_keeps_alert_pending(self, coordinator, notifier):
        coordinator.escalation.process = AsyncMock(side_effect=RuntimeError("worker crashed"))

        evaluation = await coordinator.evaluate("user-1", None, CRITICAL)

        assert evaluation.severity == Severity.CRITICAL
        assert evaluation.alert.status == AlertStatus.PROFESSIONAL_NOTIFIED
        assert evaluation.alert.notification_pending
        assert notifier.calls == []
        stats = await coordinator.get_crisis_stats()
        assert stats["pending_notifications"] == 1

    @pytest.mark.asyncio
    async def test_reload_failure_after_page_returns_alert(self, coordinator, persistence, notifier):
        process = coordinator.escalation.process

        async def process_then_lose_storage(job):
            delivered = await process(job)

            async def broken(alert_id):
                raise ConnectionError("database down")

            persistence.load_alert = broken
            return delivered

        coordinator.escalation.process = process_then_lose_storage

        evaluation = await coordinator.evaluate("user-1", None, CRITICAL)

        assert evaluation.alert is not None
        assert evaluation.alert.status == AlertStatus.PROFESSIONAL_NOTIFIED
        assert [call[0] for call in notifier.calls] == [evaluation.alert.id]

    @pytest.mark.asyncio
    async def test_storage_failure_forces_review(self, coordinator, persistence):
        async def broken(assessment):
            raise ConnectionError("database down")

        persistence.save_assessment = broken

        evaluation = await coordinator.evaluate("user-1", None, LOW)

        assert evaluation.severity == Severity.LOW
        assert evaluation.requires_review


class TestAlertLifecycle:
    """Test resolving, transferring and querying alerts."""

    @pytest.mark.asyncio
    async def test_resolve(self, coordinator):
        evaluation = await coordinator.evaluate("user-1", None, HIGH)

        alert = await coordinator.resolve_alert(evaluation.alert.id, note="Spoke with user")

        assert alert.status == AlertStatus.RESOLVED
        assert alert.resolution_note == "Spoke with user"
        assert alert.resolved_at is not None
        assert await coordinator.get_active_alerts("user-1") == []

    @pytest.mark.asyncio
    async def test_resolve_twice_rejected(self, coordinator, audit):
        evaluation = await coordinator.evaluate("user-1", None, HIGH)
        await coordinator.resolve_alert(evaluation.alert.id)

        with pytest.raises(InvalidAlertTransition):
            await coordinator.resolve_alert(evaluation.alert.id)

        alert = await coordinator.get_alert(evaluation.alert.id)
        assert alert.status == AlertStatus.RESOLVED
        assert audit.count(AuditEventType.TRANSITION_REJECTED) == 1

    @pytest.mark.asyncio
    async def test_transfer_then_resolve_rejected(self, coordinator):
        evaluation = await coordinator.evaluate("user-1", None, HIGH)

        alert = await coordinator.transfer_alert(evaluation.alert.id, note="Handed to local clinic")

        assert alert.status == AlertStatus.TRANSFERRED
        with pytest.raises(InvalidAlertTransition):
            await coordinator.resolve_alert(alert.id)

    @pytest.mark.asyncio
    async def test_new_episode_after_resolution(self, coordinator):
        first = await coordinator.evaluate("user-1", None, HIGH)
        await coordinator.resolve_alert(first.alert.id)

        second = await coordinator.evaluate("user-1", None, HIGH)

        assert second.alert.id != first.alert.id

    @pytest.mark.asyncio
    async def test_unknown_alert(self, coordinator):
        with pytest.raises(AlertNotFound):
            await coordinator.get_alert("missing")
        with pytest.raises(AlertNotFound):
            await coordinator.resolve_alert("missing")

    @pytest.mark.asyncio
    async def test_stats(self, coordinator):
        await coordinator.evaluate("user-a", None, CRITICAL)
        await coordinator.evaluate("user-b", None, HIGH)

        stats = await coordinator.get_crisis_stats()

        assert stats["active_alerts"] == 2
        assert stats["by_severity"] == {"low": 0, "medium": 0, "high": 1, "critical": 1}
        assert stats["by_status"] == {"professional_notified": 1, "escalated": 1}
        assert stats["pending_notifications"] == 1
        assert stats["manual_interventions"] == 0
        assert stats["queued_jobs"] == 3

    @pytest.mark.asyncio
    async def test_worker_delivers_and_schedules(self, coordinator, notifier):
        await coordinator.start()
        evaluation = await coordinator.evaluate("user-1", None, HIGH)
        alert_id = evaluation.alert.id

        for _ in range(100):
            follow_ups = await coordinator.get_follow_ups(alert_id)
            alert = await coordinator.get_alert(alert_id)
            if follow_ups and not alert.notification_pending:
                break
            await asyncio.sleep(0.01)

        assert [f.relative_timeframe for f in follow_ups] == ["6 hours", "24 hours", "1 week"]
        assert not alert.notification_pending
        assert [call[0] for call in notifier.calls] == [alert_id]

    @pytest.mark.asyncio
    async def test_start_recovers_pending(self, coordinator, notifier):
        notifier.fail_times = 1
        await coordinator.evaluate("user-1", None, CRITICAL)
        await coordinator.escalation.stop()

        recovered = await coordinator.start()

        assert recovered == 1


class TestFollowUps:
    """Test completing follow-ups and sweeping missed ones."""

    async def _alert_with_follow_ups(self, coordinator, persistence):
        evaluation = await coordinator.evaluate("user-1", None, HIGH)
        alert = evaluation.alert
        await persistence.save_follow_ups(
            alert.id, InterventionPlanner().follow_up_schedule(alert.severity, alert.created_at)
        )
        return alert

    @pytest.mark.asyncio
    async def test_complete(self, coordinator, persistence, audit):
        alert = await self._alert_with_follow_ups(coordinator, persistence)

        done = await coordinator.complete_follow_up(alert.id, 0, "therapist-3")

        assert done.status == FollowUpStatus.DONE
        assert done.completed_by == "therapist-3"
        assert done.completed_at is not None
        stored = await coordinator.get_follow_ups(alert.id)
        assert [f.status for f in stored] == [
            FollowUpStatus.DONE,
            FollowUpStatus.SCHEDULED,
            FollowUpStatus.SCHEDULED,
        ]
        assert audit.count(AuditEventType.FOLLOW_UP_COMPLETED) == 1

    @pytest.mark.asyncio
    async def test_complete_twice_keeps_first(self, coordinator, persistence, audit):
        alert = await self._alert_with_follow_ups(coordinator, persistence)
        await coordinator.complete_follow_up(alert.id, 1, "therapist-3")

        again = await coordinator.complete_follow_up(alert.id, 1, "someone-else")

        assert again.completed_by == "therapist-3"
        assert audit.count(AuditEventType.FOLLOW_UP_COMPLETED) == 1

    @pytest.mark.asyncio
    async def test_unknown_follow_up(self, coordinator, persistence):
        alert = await self._alert_with_follow_ups(coordinator, persistence)

        with pytest.raises(FollowUpNotFound):
            await coordinator.complete_follow_up(alert.id, 3, "therapist-3")
        with pytest.raises(FollowUpNotFound):
            await coordinator.complete_follow_up(alert.id, -1, "therapist-3")
        with pytest.raises(AlertNotFound):
            await coordinator.complete_follow_up("missing", 0, "therapist-3")

    @pytest.mark.asyncio
    async def test_sweep_marks_overdue_missed(self, coordinator, persistence, audit):
        alert = await self._alert_with_follow_ups(coordinator, persistence)

        # 6-hour check-in is past the 12h grace, 24-hour one is not
        missed = await coordinator.sweep_missed_follow_ups(now=alert.created_at + timedelta(hours=19))

        assert missed == 1
        stored = await coordinator.get_follow_ups(alert.id)
        assert [f.status for f in stored] == [
            FollowUpStatus.MISSED,
            FollowUpStatus.SCHEDULED,
            FollowUpStatus.SCHEDULED,
        ]
        assert audit.count(AuditEventType.FOLLOW_UP_MISSED) == 1
        assert await coordinator.sweep_missed_follow_ups(now=alert.created_at + timedelta(hours=19)) == 0

    @pytest.mark.asyncio
    async def test_sweep_skips_completed(self, coordinator, persistence):
        alert = await self._alert_with_follow_ups(coordinator, persistence)
        await coordinator.complete_follow_up(alert.id, 0, "therapist-3")

        missed = await coordinator.sweep_missed_follow_ups(now=alert.created_at + timedelta(hours=19))

        assert missed == 0

    @pytest.mark.asyncio
    async def test_missed_can_still_be_completed(self, coordinator, persistence):
        alert = await self._alert_with_follow_ups(coordinator, persistence)
        await coordinator.sweep_missed_follow_ups(now=alert.created_at + timedelta(hours=19))

        done = await coordinator.complete_follow_up(alert.id, 0, "therapist-3")

        assert done.status == FollowUpStatus.DONE


class TestResourceAccess:
    """Test the resource access log."""

    @pytest.mark.asyncio
    async def test_record_and_list(self, coordinator, audit):
        evaluation = await coordinator.evaluate("user-1", None, CRITICAL)

        access = await coordinator.record_resource_access(
            "user-1", "us-988-lifeline", "phone", alert_id=evaluation.alert.id
        )

        assert access.access_method == AccessMethod.PHONE
        assert access.alert_id == evaluation.alert.id
        assert await coordinator.get_resource_access("user-1") == [access]
        assert await coordinator.get_resource_access("user-2") == []
        assert audit.count(AuditEventType.RESOURCE_ACCESSED) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "user_id, resource_id, method, field",
        [
            ("", "us-988-lifeline", "phone", "user_id"),
            ("user-1", "  ", "phone", "resource_id"),
            ("user-1", "us-988-lifeline", "carrier-pigeon", "access_method"),
        ],
    )
    async def test_rejected(self, coordinator, user_id, resource_id, method, field):
        with pytest.raises(ValidationFailure) as exc_info:
            await coordinator.record_resource_access(user_id, resource_id, method)

        assert exc_info.value.field == field
        assert await coordinator.get_resource_access("user-1") == []

    @pytest.mark.asyncio
    async def test_unknown_alert(self, coordinator):
        with pytest.raises(AlertNotFound):
            await coordinator.record_resource_access(
                "user-1", "us-988-lifeline", AccessMethod.TEXT, alert_id="missing"
            )


class TestSafetyPlans:
    """Test safety plan access through the coordinator."""

    @pytest.mark.asyncio
    async def test_update_and_history(self, coordinator):
        await coordinator.get_or_create_safety_plan("user-1", couple_id="couple-1")

        plan = await coordinator.update_safety_plan(
            "user-1", SafetyPlanUpdate(coping_strategies=["call my sister"]), "therapist-3"
        )

        assert plan.version == 2
        assert plan.couple_id == "couple-1"
        history = await coordinator.get_safety_plan_history("user-1")
        assert [p.version for p in history] == [1, 2]


class TestLifecycle:
    """Test shutdown."""

    @pytest.mark.asyncio
    async def test_close_releases_clients(self, make_coordinator, notifier):
        provider = FixedProvider(DeepAnalysisOpinion(severity=Severity.LOW, confidence=0.5))
        coordinator = make_coordinator(analysis_provider=provider)
        await coordinator.start()

        await coordinator.close()

        assert notifier.closed
        assert provider.closed
