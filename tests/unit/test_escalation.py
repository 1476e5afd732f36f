"""Tests for the escalation retry worker."""

import asyncio

import pytest

from sparq_safety.infra.redis import KeyedLock
from sparq_safety.safety.alert_state import AlertStatus
from sparq_safety.safety.audit_logger import AuditEventType
from sparq_safety.safety.escalation import EscalationWorker, build_notification_payload
from sparq_safety.safety.intervention_planner import InterventionPlanner
from sparq_safety.safety.models import (
    CrisisAlert,
    CrisisType,
    EscalationJob,
    EscalationJobKind,
    Severity,
)


def make_alert(severity: Severity = Severity.HIGH) -> CrisisAlert:
    alert = CrisisAlert(
        user_id="user-1",
        couple_id="couple-1",
        severity=severity,
        type=CrisisType.SELF_HARM,
        status=AlertStatus.ESCALATED,
        notification_pending=True,
    )
    alert.intervention_plan = InterventionPlanner().plan(severity, alert.type, alert.created_at)
    return alert


def notify_job(alert: CrisisAlert) -> EscalationJob:
    return EscalationJob(kind=EscalationJobKind.NOTIFY, alert_id=alert.id, severity=alert.severity)


class TestEscalationWorker:
    """Test notification delivery, retry and hand-off."""

    @pytest.fixture
    async def worker(self, persistence, notifier, audit):
        worker = EscalationWorker(
            persistence,
            notifier,
            KeyedLock(),
            audit,
            max_attempts=3,
            backoff_base_seconds=60.0,
        )
        yield worker
        await worker.stop()

    @pytest.mark.asyncio
    async def test_success_clears_pending(self, worker, persistence, notifier, audit):
        alert = make_alert()
        await persistence.save_alert(alert)

        assert await worker.process(notify_job(alert))

        stored = await persistence.load_alert(alert.id)
        assert not stored.notification_pending
        assert stored.notified_severities == [Severity.HIGH]
        assert stored.professional_contacts == ["on-call"]
        assert len(notifier.calls) == 1
        assert notifier.calls[0][2]["crisis_type"] == "self_harm"
        assert audit.count(AuditEventType.PROFESSIONAL_NOTIFIED) == 1

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, worker, persistence, notifier, audit):
        notifier.fail_times = 1
        alert = make_alert()
        await persistence.save_alert(alert)
        job = notify_job(alert)

        assert not await worker.process(job)

        assert worker.scheduled_retries == 1
        assert job.attempts == 1
        assert "503" in job.last_error
        stored = await persistence.load_alert(alert.id)
        assert stored.notification_pending
        assert stored.professional_contacts == []
        assert audit.count(AuditEventType.NOTIFICATION_FAILED) == 1

    @pytest.mark.asyncio
    async def test_max_attempts_goes_to_manual_queue(self, worker, persistence, notifier, audit):
        notifier.fail_times = 10
        alert = make_alert()
        await persistence.save_alert(alert)
        job = notify_job(alert)
        job.attempts = 2

        assert not await worker.process(job)

        queue = await persistence.list_manual_interventions()
        assert [item.alert_id for item in queue] == [alert.id]
        assert queue[0].user_id == "user-1"
        assert queue[0].attempts == 3
        assert worker.scheduled_retries == 0
        assert audit.count(AuditEventType.MANUAL_INTERVENTION_REQUIRED) == 1

    @pytest.mark.asyncio
    async def test_retry_runs_after_backoff(self, persistence, notifier, audit):
        """A failed job is re-queued and picked up by the running worker."""
        notifier.fail_times = 1
        worker = EscalationWorker(
            persistence, notifier, KeyedLock(), audit, backoff_base_seconds=0.01
        )
        alert = make_alert()
        await persistence.save_alert(alert)
        worker.start()
        try:
            worker.submit(notify_job(alert))
            for _ in range(100):
                stored = await persistence.load_alert(alert.id)
                if not stored.notification_pending:
                    break
                await asyncio.sleep(0.01)
        finally:
            await worker.stop()

        assert len(notifier.calls) == 2
        assert not stored.notification_pending

    @pytest.mark.parametrize("attempts,expected", [(1, 60.0), (2, 120.0), (3, 240.0), (10, 300.0)])
    def test_backoff_delay(self, persistence, notifier, audit, attempts, expected):
        worker = EscalationWorker(
            persistence, notifier, KeyedLock(), audit, backoff_base_seconds=60.0
        )

        assert worker.backoff_delay(attempts) == expected

    @pytest.mark.asyncio
    async def test_inactive_alert_skipped(self, worker, persistence, notifier):
        alert = make_alert()
        alert.status = AlertStatus.RESOLVED
        await persistence.save_alert(alert)

        assert await worker.process(notify_job(alert))

        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_already_notified_severity_skipped(self, worker, persistence, notifier):
        alert = make_alert()
        alert.notified_severities = [Severity.HIGH]
        await persistence.save_alert(alert)

        assert await worker.process(notify_job(alert))

        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_recover_resubmits_pending(self, worker, persistence):
        pending = make_alert()
        delivered = make_alert()
        delivered.notification_pending = False
        await persistence.save_alert(pending)
        await persistence.save_alert(delivered)

        assert await worker.recover() == 1
        assert worker.queued == 1

    @pytest.mark.asyncio
    async def test_schedule_follow_ups(self, worker, persistence, audit):
        alert = make_alert()
        await persistence.save_alert(alert)

        job = EscalationJob(
            kind=EscalationJobKind.SCHEDULE_FOLLOW_UPS,
            alert_id=alert.id,
            severity=alert.severity,
        )
        assert await worker.process(job)

        follow_ups = await persistence.load_follow_ups(alert.id)
        assert [f.relative_timeframe for f in follow_ups] == ["6 hours", "24 hours", "1 week"]
        assert audit.count(AuditEventType.FOLLOW_UPS_SCHEDULED) == 1

    def test_payload_has_no_text(self):
        payload = build_notification_payload(make_alert())

        assert payload["severity"] == "high"
        assert payload["status"] == "escalated"
        assert "text" not in payload
