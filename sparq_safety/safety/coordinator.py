"""
Crisis Coordinator

Central orchestrator for crisis safety. Every utterance that needs a
safety answer goes through ``evaluate``:

    validate -> extract -> classify -> (deep analysis) -> history
    -> resources -> alert create/update -> escalation -> follow-ups

The coordinator owns the CrisisAlert state machine. Notification and
follow-up scheduling are handed to the EscalationWorker.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from sparq_safety.infra.redis import KeyedLock
from sparq_safety.safety.alert_state import (
    AlertStatus,
    can_transition,
    is_escalated_state,
)
from sparq_safety.safety.audit_logger import AuditEventType, AuditLogger, AuditSeverity
from sparq_safety.safety.deep_analysis import DeepAnalysisGateway
from sparq_safety.safety.errors import (
    AlertNotFound,
    DetectionFailure,
    FollowUpNotFound,
    InvalidAlertTransition,
    ValidationFailure,
)
from sparq_safety.safety.escalation import EscalationWorker
from sparq_safety.safety.history_tracker import HistoryTracker
from sparq_safety.safety.indicator_extractor import IndicatorExtractor
from sparq_safety.safety.intervention_planner import InterventionPlanner
from sparq_safety.safety.models import (
    AccessMethod,
    CrisisAlert,
    CrisisResource,
    EscalationJob,
    EscalationJobKind,
    EvaluationContext,
    FollowUpAction,
    FollowUpStatus,
    ResourceAccess,
    RiskIndicator,
    SafetyAssessment,
    SafetyEvaluation,
    SafetyPlan,
    SafetyPlanUpdate,
    Severity,
)
from sparq_safety.safety.persistence import Persistence
from sparq_safety.safety.resource_matcher import ResourceMatcher
from sparq_safety.safety.safety_plans import SafetyPlanStore
from sparq_safety.safety.severity_classifier import (
    ClassificationResult,
    SeverityClassifier,
    fail_safe_result,
)

logger = logging.getLogger(__name__)


# ==================================
# User-facing Messages
# ==================================

CRISIS_MESSAGES: dict[Severity, str] = {
    Severity.CRITICAL: (
        "I'm really concerned about what you've shared. Your safety matters most right now. "
        "If you are in immediate danger, call 911. You can also call or text 988 "
        "(Suicide & Crisis Lifeline) or text HOME to 741741 any time. "
        "A crisis professional is being notified to reach out to you."
    ),
    Severity.HIGH: (
        "It sounds like you're going through something really hard. You don't have to "
        "handle this alone. Please consider reaching out to one of the resources below "
        "today. A member of our care team will follow up with you."
    ),
    Severity.MEDIUM: (
        "Thank you for sharing this. What you're feeling matters. The resources below "
        "can help, and your safety plan has some steps you can try right now."
    ),
    Severity.LOW: (
        "It sounds like things have been difficult. Remember that support is available "
        "whenever you need it."
    ),
    Severity.NONE: "",
}

REVIEW_MESSAGE = (
    "We want to make sure you're okay. A member of our care team will review "
    "this conversation and may check in with you."
)


class CrisisCoordinator:
    """
    Crisis detection and escalation orchestrator.

    Built once at startup by ``build_coordinator`` and shared by reference.

    Usage:
        coordinator = build_coordinator(settings)
        evaluation = await coordinator.evaluate(
            user_id="user_123",
            couple_id="couple_9",
            text="I can't do this anymore",
        )
        if evaluation.requires_immediate_intervention:
            show(evaluation.message, evaluation.resources)
    """

    def __init__(
        self,
        persistence: Persistence,
        extractor: IndicatorExtractor,
        classifier: SeverityClassifier,
        gateway: DeepAnalysisGateway,
        history: HistoryTracker,
        matcher: ResourceMatcher,
        planner: InterventionPlanner,
        escalation: EscalationWorker,
        safety_plans: SafetyPlanStore,
        locks: KeyedLock,
        audit: AuditLogger,
        default_jurisdiction: str = "US",
        follow_up_grace: timedelta = timedelta(hours=12),
    ):
        """
        Initialize Crisis Coordinator.

        Args:
            persistence: Durable store for assessments, alerts and plans
            extractor: Rule-based risk indicator extractor
            classifier: Severity classifier
            gateway: Deep analysis gateway (may have no provider)
            history: Per-user history tracker
            matcher: Crisis resource matcher
            planner: Intervention planner
            escalation: Background notification and follow-up worker
            safety_plans: Versioned safety plan store
            locks: Keyed lock for per-user and per-alert serialization
            audit: Crisis audit trail
            default_jurisdiction: Geo used when a request carries none
            follow_up_grace: How long past due a follow-up counts as missed
        """
        self.persistence = persistence
        self.extractor = extractor
        self.classifier = classifier
        self.gateway = gateway
        self.history = history
        self.matcher = matcher
        self.planner = planner
        self.escalation = escalation
        self.safety_plans = safety_plans
        self.locks = locks
        self.audit = audit
        self.default_jurisdiction = default_jurisdiction
        self.follow_up_grace = follow_up_grace

        logger.info(
            f"CrisisCoordinator initialized, deep_analysis={gateway.enabled}, "
            f"jurisdiction={default_jurisdiction}"
        )

    # ==================================
    # Evaluation
    # ==================================

    async def evaluate(
        self,
        user_id: str,
        couple_id: Optional[str],
        text: str,
        context: Union[EvaluationContext, str] = EvaluationContext.GENERAL,
        jurisdiction: Optional[str] = None,
    ) -> SafetyEvaluation:
        """
        Evaluate one utterance for crisis risk.

        Args:
            user_id: User who wrote the text
            couple_id: Couple the user belongs to
            text: The utterance (never stored, never logged)
            context: general, assessment or crisis
            jurisdiction: Geo hint such as "US" or "CA-AB"

        Returns:
            SafetyEvaluation with the assessment, the active alert (if
            any), matched resources and a user-facing message

        Raises:
            ValidationFailure: If user_id, text or context is invalid
        """
        start_time = time.time()
        context = self._validate(user_id, text, context)

        classification, indicators = self._detect(user_id, text, context)

        if not classification.detection_failed:
            classification = await self._second_opinion(
                user_id, text, context, indicators, classification
            )

        assessment = SafetyAssessment(
            user_id=user_id,
            couple_id=couple_id,
            severity=classification.severity,
            indicators=indicators,
            requires_immediate_intervention=classification.requires_immediate_intervention,
            requires_review=classification.requires_review,
            confidence=classification.confidence,
            context=context,
            reasoning=classification.reasoning,
            recommended_actions=classification.recommended_actions,
            deep_analysis_used=classification.deep_analysis_used,
            detection_failed=classification.detection_failed,
        )
        assessment = await self._record(assessment)

        geo = jurisdiction or self.default_jurisdiction
        resources = await self.matcher.match(assessment.crisis_type, geo)

        alert = None
        if assessment.severity > Severity.NONE or assessment.requires_review:
            alert = await self._handle_alert(assessment, resources, geo)

        if assessment.severity >= Severity.HIGH:
            await self._note_warning_signs(assessment)

        processing_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Evaluated user={user_id}: severity={assessment.severity.value}, "
            f"review={assessment.requires_review}, "
            f"alert={alert.id if alert else None}, time={processing_time_ms:.1f}ms"
        )

        return SafetyEvaluation(
            assessment=assessment,
            alert=alert,
            resources=resources,
            message=self._message_for(assessment),
        )

    def _validate(
        self,
        user_id: object,
        text: object,
        context: Union[EvaluationContext, str],
    ) -> EvaluationContext:
        failure = None
        if not isinstance(user_id, str) or not user_id.strip():
            failure = ValidationFailure("user_id", "user_id is required")
        elif not isinstance(text, str) or not text.strip():
            failure = ValidationFailure("text", "text is required")
        else:
            try:
                return EvaluationContext(context)
            except ValueError:
                failure = ValidationFailure(
                    "context",
                    f"context must be one of {[c.value for c in EvaluationContext]}",
                )

        self.audit.log(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            action="Evaluation rejected",
            user_id=user_id if isinstance(user_id, str) else None,
            details=failure.to_dict(),
            outcome="failure",
        )
        raise failure

    def _detect(
        self,
        user_id: str,
        text: str,
        context: EvaluationContext,
    ) -> tuple[ClassificationResult, list[RiskIndicator]]:
        """Rule-based detection; any failure yields the fail-safe result."""
        try:
            indicators = self._extract(text, context)
        except DetectionFailure as e:
            logger.error(f"Detection failed for user={user_id}: {e}", exc_info=True)
            self.audit.log_detection_failed(user_id=user_id, reason=str(e))
            return fail_safe_result(str(e)), []

        classification = self.classifier.classify(indicators, context=context)
        if classification.detection_failed:
            self.audit.log_detection_failed(user_id=user_id, reason=classification.reasoning)
        return classification, indicators

    def _extract(self, text: str, context: EvaluationContext) -> list[RiskIndicator]:
        try:
            return self.extractor.extract(text, context)
        except Exception as e:
            raise DetectionFailure(f"indicator extraction failed: {e}") from e

    async def _second_opinion(
        self,
        user_id: str,
        text: str,
        context: EvaluationContext,
        indicators: list[RiskIndicator],
        classification: ClassificationResult,
    ) -> ClassificationResult:
        under_monitoring = await self.history.is_under_enhanced_monitoring(user_id)
        if not self.gateway.should_analyze(
            classification.severity, context, text, under_monitoring
        ):
            return classification

        opinion = await self.gateway.analyze(text, context)
        if opinion is None:
            self.audit.log_deep_analysis_degraded(user_id=user_id)
            return classification

        return self.classifier.classify(indicators, opinion=opinion, context=context)

    async def _record(self, assessment: SafetyAssessment) -> SafetyAssessment:
        """Correlate with history and persist; storage failure forces review."""
        try:
            assessment = await self.history.record(assessment)
            await self.persistence.save_assessment(assessment)
        except Exception as e:
            logger.error(
                f"Failed to record assessment for user={assessment.user_id}: {e}",
                exc_info=True,
            )
            assessment = assessment.model_copy(update={"requires_review": True})

        if assessment.escalating_pattern:
            self.audit.log(
                event_type=AuditEventType.ESCALATING_PATTERN,
                severity=AuditSeverity.WARNING,
                action="Escalating severity pattern detected",
                user_id=assessment.user_id,
                couple_id=assessment.couple_id,
                details={"assessment_id": assessment.id},
            )

        self.audit.log_assessment(
            user_id=assessment.user_id,
            assessment_id=assessment.id,
            severity=assessment.severity.value,
            categories=[i.category.value for i in assessment.indicators],
            requires_review=assessment.requires_review,
            couple_id=assessment.couple_id,
        )
        return assessment

    async def _note_warning_signs(self, assessment: SafetyAssessment) -> None:
        signs = sorted({term for i in assessment.indicators for term in i.matched_terms})
        if not signs:
            return
        try:
            await self.safety_plans.add_warning_signs(assessment.user_id, signs)
        except Exception as e:
            logger.error(
                f"Could not update safety plan for user={assessment.user_id}: {e}"
            )

    def _message_for(self, assessment: SafetyAssessment) -> str:
        message = CRISIS_MESSAGES[assessment.severity]
        if not message and assessment.requires_review:
            return REVIEW_MESSAGE
        return message

    # ==================================
    # Alert Lifecycle
    # ==================================

    async def _handle_alert(
        self,
        assessment: SafetyAssessment,
        resources: list[CrisisResource],
        jurisdiction: str,
    ) -> Optional[CrisisAlert]:
        alert: Optional[CrisisAlert] = None
        try:
            async with self.locks.hold("user_alert", assessment.user_id):
                active = await self.persistence.list_alerts_for_user(
                    assessment.user_id, active_only=True
                )
                plan_changed = False
                if active:
                    alert, plan_changed = await self._update_alert(
                        active[0].id, assessment, resources
                    )
                if alert is None:
                    alert = self._new_alert(assessment, resources, jurisdiction)
                    await self._create_alert(alert)
                    plan_changed = True

                alert, needs_notification = await self._advance(
                    alert.id, self._target_status(assessment)
                )
        except Exception as e:
            logger.critical(
                f"Alert handling failed for user={assessment.user_id} "
                f"severity={assessment.severity.value}: {e}",
                exc_info=True,
            )
            return await self._escalate_unsaved(
                alert or self._new_alert(assessment, resources, jurisdiction),
                assessment,
                str(e),
            )

        # Alert lock is released before dispatch; the worker takes it too
        if plan_changed:
            self.escalation.submit(
                EscalationJob(
                    kind=EscalationJobKind.SCHEDULE_FOLLOW_UPS,
                    alert_id=alert.id,
                    severity=alert.severity,
                )
            )

        if needs_notification:
            job = EscalationJob(
                kind=EscalationJobKind.NOTIFY,
                alert_id=alert.id,
                severity=alert.severity,
            )
            if alert.severity == Severity.CRITICAL:
                alert = await self._notify_now(job, alert)
            else:
                self.escalation.submit(job)

        return alert

    async def _notify_now(self, job: EscalationJob, alert: CrisisAlert) -> CrisisAlert:
        """Synchronous notification attempt; the alert is already durable."""
        try:
            await self.escalation.process(job)
            return await self.persistence.load_alert(alert.id) or alert
        except Exception as e:
            # alert keeps notification_pending and is picked up by recover()
            logger.critical(
                f"Synchronous escalation for alert={alert.id} failed: {e}",
                exc_info=True,
            )
            return alert

    async def _escalate_unsaved(
        self,
        alert: CrisisAlert,
        assessment: SafetyAssessment,
        error: str,
    ) -> Optional[CrisisAlert]:
        """
        Escalate straight from the assessment when the alert cannot be stored.

        Returns:
            The in-hand alert for escalated cases, None otherwise
        """
        target = self._target_status(assessment)
        if target == AlertStatus.DETECTED:
            return None

        if alert.status != target and can_transition(alert.status, target):
            alert.status = target
        await self.escalation.dispatch_unsaved(alert, error)
        return alert

    def _new_alert(
        self,
        assessment: SafetyAssessment,
        resources: list[CrisisResource],
        jurisdiction: str,
    ) -> CrisisAlert:
        crisis_type = assessment.crisis_type
        created_at = assessment.timestamp
        return CrisisAlert(
            user_id=assessment.user_id,
            couple_id=assessment.couple_id,
            severity=assessment.severity,
            type=crisis_type,
            indicators=list(assessment.indicators),
            created_at=created_at,
            updated_at=created_at,
            intervention_plan=self.planner.plan(
                assessment.severity, crisis_type, created_at, resources
            ),
            assessment_ids=[assessment.id],
            jurisdiction=jurisdiction,
        )

    async def _create_alert(self, alert: CrisisAlert) -> None:
        await self.persistence.save_alert(alert)

        self.audit.log_crisis_detected(
            user_id=alert.user_id,
            alert_id=alert.id,
            crisis_type=alert.type.value,
            severity=alert.severity.value,
            couple_id=alert.couple_id,
        )

    async def _update_alert(
        self,
        alert_id: str,
        assessment: SafetyAssessment,
        resources: list[CrisisResource],
    ) -> tuple[Optional[CrisisAlert], bool]:
        """
        Fold a new assessment into the active alert.

        Returns:
            (alert, plan_changed); alert is None if it closed meanwhile
        """
        async with self.locks.hold("alert", alert_id):
            alert = await self.persistence.load_alert(alert_id)
            if alert is None or not alert.is_active:
                return None, False

            alert.assessment_ids.append(assessment.id)
            alert.indicators = _merge_indicators(alert.indicators, assessment.indicators)

            plan_changed = False
            previous = alert.severity
            if assessment.severity > alert.severity:
                alert.severity = assessment.severity
                alert.type = assessment.crisis_type
                alert.intervention_plan = self.planner.plan(
                    alert.severity, alert.type, alert.created_at, resources
                )
                plan_changed = True

            alert.updated_at = _now()
            await self.persistence.save_alert(alert)

        self.audit.log(
            event_type=AuditEventType.CRISIS_UPDATED,
            severity=AuditSeverity.WARNING if plan_changed else AuditSeverity.INFO,
            action=f"Alert updated: {previous.value} -> {alert.severity.value}",
            user_id=alert.user_id,
            couple_id=alert.couple_id,
            alert_id=alert.id,
            details={"assessment_id": assessment.id, "severity_raised": plan_changed},
        )
        return alert, plan_changed

    def _target_status(self, assessment: SafetyAssessment) -> AlertStatus:
        if assessment.severity == Severity.CRITICAL:
            return AlertStatus.PROFESSIONAL_NOTIFIED
        if assessment.severity == Severity.HIGH or assessment.requires_review:
            return AlertStatus.ESCALATED
        return AlertStatus.DETECTED

    async def _advance(
        self,
        alert_id: str,
        target: AlertStatus,
    ) -> tuple[CrisisAlert, bool]:
        """
        Move an alert forward to ``target`` if that is a legal transition.

        The status is decided here, before any notification attempt. An
        escalated alert not yet notified at its severity is marked
        ``notification_pending``.

        Returns:
            (alert, needs_notification)
        """
        async with self.locks.hold("alert", alert_id):
            alert = await self.persistence.load_alert(alert_id)
            if alert is None:
                raise AlertNotFound(alert_id)

            previous = alert.status
            if alert.status != target and can_transition(alert.status, target):
                alert.status = target

            needs_notification = is_escalated_state(alert.status) and not alert.was_notified_for(
                alert.severity
            )
            changed = alert.status != previous or needs_notification != alert.notification_pending
            if changed:
                alert.notification_pending = needs_notification
                alert.updated_at = _now()
                await self.persistence.save_alert(alert)

        if alert.status != previous:
            self.audit.log_status_change(
                event_type=AuditEventType.CRISIS_ESCALATED,
                user_id=alert.user_id,
                alert_id=alert.id,
                from_status=previous.value,
                to_status=alert.status.value,
            )
        return alert, needs_notification

    async def resolve_alert(self, alert_id: str, note: Optional[str] = None) -> CrisisAlert:
        """
        Close an alert as resolved.

        Raises:
            AlertNotFound: If the alert does not exist
            InvalidAlertTransition: If the alert is already closed
        """
        return await self._close(
            alert_id, AlertStatus.RESOLVED, note, AuditEventType.CRISIS_RESOLVED
        )

    async def transfer_alert(self, alert_id: str, note: Optional[str] = None) -> CrisisAlert:
        """
        Close an alert by handing it off to an outside professional.

        Raises:
            AlertNotFound: If the alert does not exist
            InvalidAlertTransition: If the alert is already closed
        """
        return await self._close(
            alert_id, AlertStatus.TRANSFERRED, note, AuditEventType.CRISIS_TRANSFERRED
        )

    async def _close(
        self,
        alert_id: str,
        target: AlertStatus,
        note: Optional[str],
        event_type: AuditEventType,
    ) -> CrisisAlert:
        async with self.locks.hold("alert", alert_id):
            alert = await self.persistence.load_alert(alert_id)
            if alert is None:
                raise AlertNotFound(alert_id)

            previous = alert.status
            if not can_transition(previous, target):
                self.audit.log(
                    event_type=AuditEventType.TRANSITION_REJECTED,
                    severity=AuditSeverity.WARNING,
                    action=f"Rejected {previous.value} -> {target.value}",
                    user_id=alert.user_id,
                    alert_id=alert.id,
                    outcome="failure",
                )
                raise InvalidAlertTransition(alert_id, previous.value, target.value)

            now = _now()
            alert.status = target
            alert.resolution_note = note
            alert.resolved_at = now
            alert.updated_at = now
            await self.persistence.save_alert(alert)

        self.audit.log_status_change(
            event_type=event_type,
            user_id=alert.user_id,
            alert_id=alert.id,
            from_status=previous.value,
            to_status=target.value,
            note=note,
        )
        return alert

    # ==================================
    # Queries
    # ==================================

    async def get_active_alerts(self, user_id: str) -> list[CrisisAlert]:
        """Active alerts for a user, newest first."""
        return await self.persistence.list_alerts_for_user(user_id, active_only=True)

    async def get_alert(self, alert_id: str) -> CrisisAlert:
        alert = await self.persistence.load_alert(alert_id)
        if alert is None:
            raise AlertNotFound(alert_id)
        return alert

    async def get_follow_ups(self, alert_id: str) -> list[FollowUpAction]:
        return await self.persistence.load_follow_ups(alert_id)

    async def get_crisis_stats(self) -> dict:
        """
        Snapshot of open crisis work.

        Returns:
            Dict with active alert counts by severity and status, pending
            notifications and the manual-intervention queue length
        """
        active = await self.persistence.list_active_alerts()
        manual = await self.persistence.list_manual_interventions()

        by_severity = {severity.value: 0 for severity in Severity if severity != Severity.NONE}
        by_status: dict[str, int] = {}
        for alert in active:
            by_severity[alert.severity.value] = by_severity.get(alert.severity.value, 0) + 1
            by_status[alert.status.value] = by_status.get(alert.status.value, 0) + 1

        return {
            "active_alerts": len(active),
            "by_severity": by_severity,
            "by_status": by_status,
            "pending_notifications": sum(1 for a in active if a.notification_pending),
            "manual_interventions": len(manual),
            "queued_jobs": self.escalation.queued,
            "scheduled_retries": self.escalation.scheduled_retries,
        }

    # ==================================
    # Follow-ups
    # ==================================

    async def complete_follow_up(
        self,
        alert_id: str,
        index: int,
        completed_by: str,
    ) -> FollowUpAction:
        """
        Mark one follow-up of an alert as done.

        Late check-ins count: a missed follow-up can still be completed.
        Completing a done follow-up returns it unchanged.

        Args:
            alert_id: Alert the follow-up belongs to
            index: Position in the alert's follow-up schedule
            completed_by: Professional or user who did the check-in

        Raises:
            AlertNotFound: If the alert does not exist
            FollowUpNotFound: If there is no follow-up at ``index``
        """
        async with self.locks.hold("alert", alert_id):
            alert = await self.persistence.load_alert(alert_id)
            if alert is None:
                raise AlertNotFound(alert_id)

            follow_ups = await self.persistence.load_follow_ups(alert_id)
            if not 0 <= index < len(follow_ups):
                raise FollowUpNotFound(alert_id, index)

            follow_up = follow_ups[index]
            if follow_up.status == FollowUpStatus.DONE:
                return follow_up

            previous = follow_up.status
            follow_up.status = FollowUpStatus.DONE
            follow_up.completed_at = _now()
            follow_up.completed_by = completed_by
            await self.persistence.save_follow_ups(alert_id, follow_ups)

        self.audit.log(
            event_type=AuditEventType.FOLLOW_UP_COMPLETED,
            severity=AuditSeverity.INFO,
            action=f"Follow-up '{follow_up.relative_timeframe}' completed",
            user_id=alert.user_id,
            alert_id=alert_id,
            details={"index": index, "previous_status": previous.value, "by": completed_by},
        )
        return follow_up

    async def sweep_missed_follow_ups(self, now: Optional[datetime] = None) -> int:
        """
        Mark scheduled follow-ups more than ``follow_up_grace`` overdue as missed.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Number of follow-ups marked missed
        """
        now = now or _now()
        cutoff = now - self.follow_up_grace
        missed = 0

        for alert_id in await self.persistence.list_alerts_with_due_follow_ups(cutoff):
            async with self.locks.hold("alert", alert_id):
                follow_ups = await self.persistence.load_follow_ups(alert_id)
                overdue = [
                    f for f in follow_ups
                    if f.status == FollowUpStatus.SCHEDULED and f.scheduled_at < cutoff
                ]
                if not overdue:
                    continue
                for follow_up in overdue:
                    follow_up.status = FollowUpStatus.MISSED
                await self.persistence.save_follow_ups(alert_id, follow_ups)
                alert = await self.persistence.load_alert(alert_id)

            missed += len(overdue)
            self.audit.log(
                event_type=AuditEventType.FOLLOW_UP_MISSED,
                severity=AuditSeverity.WARNING,
                action=f"{len(overdue)} follow-ups missed",
                user_id=alert.user_id if alert else None,
                alert_id=alert_id,
                details={"timeframes": [f.relative_timeframe for f in overdue]},
            )

        if missed:
            logger.warning(f"Marked {missed} follow-ups as missed")
        return missed

    # ==================================
    # Resource Access
    # ==================================

    async def record_resource_access(
        self,
        user_id: str,
        resource_id: str,
        access_method: Union[AccessMethod, str],
        alert_id: Optional[str] = None,
    ) -> ResourceAccess:
        """
        Record that a user reached out to a crisis resource.

        Raises:
            ValidationFailure: If user_id, resource_id or access_method is invalid
            AlertNotFound: If ``alert_id`` is given and does not exist
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationFailure("user_id", "user_id is required")
        if not isinstance(resource_id, str) or not resource_id.strip():
            raise ValidationFailure("resource_id", "resource_id is required")
        try:
            method = AccessMethod(access_method)
        except ValueError:
            raise ValidationFailure(
                "access_method",
                f"access_method must be one of {[m.value for m in AccessMethod]}",
            ) from None
        if alert_id is not None and await self.persistence.load_alert(alert_id) is None:
            raise AlertNotFound(alert_id)

        access = ResourceAccess(
            user_id=user_id,
            resource_id=resource_id,
            access_method=method,
            alert_id=alert_id,
        )
        await self.persistence.record_resource_access(access)

        self.audit.log(
            event_type=AuditEventType.RESOURCE_ACCESSED,
            severity=AuditSeverity.INFO,
            action=f"Resource {resource_id} accessed by {method.value}",
            user_id=user_id,
            alert_id=alert_id,
            details={"resource_id": resource_id, "access_method": method.value},
        )
        return access

    async def get_resource_access(self, user_id: str) -> list[ResourceAccess]:
        return await self.persistence.list_resource_access(user_id)

    # ==================================
    # Safety Plans
    # ==================================

    async def get_or_create_safety_plan(
        self,
        user_id: str,
        couple_id: Optional[str] = None,
    ) -> SafetyPlan:
        return await self.safety_plans.get_or_create(user_id, couple_id)

    async def update_safety_plan(
        self,
        user_id: str,
        changes: SafetyPlanUpdate,
        updated_by: str,
    ) -> SafetyPlan:
        return await self.safety_plans.update(user_id, changes, updated_by)

    async def get_safety_plan_history(self, user_id: str) -> list[SafetyPlan]:
        return await self.safety_plans.history(user_id)

    # ==================================
    # Lifecycle
    # ==================================

    async def start(self) -> int:
        """
        Start the escalation worker and pick up pending notifications.

        Returns:
            Number of recovered notification jobs
        """
        self.escalation.start()
        return await self.escalation.recover()

    async def close(self) -> None:
        """Stop the worker and release outbound clients."""
        await self.escalation.stop()
        await self.escalation.notifier.close()
        if self.gateway.provider is not None:
            await self.gateway.provider.close()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _merge_indicators(
    existing: list[RiskIndicator],
    new: list[RiskIndicator],
) -> list[RiskIndicator]:
    """Union by category, keeping the more confident indicator."""
    merged: dict = {i.category: i for i in existing}
    for indicator in new:
        current = merged.get(indicator.category)
        if current is None or indicator.confidence > current.confidence:
            merged[indicator.category] = indicator
    return sorted(merged.values(), key=lambda i: (-i.confidence, i.category.value))
