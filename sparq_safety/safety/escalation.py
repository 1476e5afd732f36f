"""
Escalation Worker

Owns professional notification and follow-up scheduling for alerts.
Jobs are retried with exponential backoff until they succeed; after
``max_attempts`` failures the alert is put on the manual-intervention
queue. Nothing is dropped silently.
"""

import asyncio
import logging
from typing import Optional

from sparq_safety.infra.notifications import ProfessionalNotifier
from sparq_safety.infra.redis import KeyedLock
from sparq_safety.safety.audit_logger import AuditEventType, AuditLogger, AuditSeverity
from sparq_safety.safety.models import (
    CrisisAlert,
    EscalationJob,
    EscalationJobKind,
    ManualInterventionItem,
)
from sparq_safety.safety.persistence import Persistence

logger = logging.getLogger(__name__)


def build_notification_payload(alert: CrisisAlert) -> dict:
    """Payload sent to the on-call professional (no raw user text)."""
    return {
        "alert_id": alert.id,
        "user_id": alert.user_id,
        "couple_id": alert.couple_id,
        "severity": alert.severity.value,
        "crisis_type": alert.type.value,
        "status": alert.status.value,
        "created_at": alert.created_at.isoformat(),
        "indicators": [i.category.value for i in alert.indicators],
        "immediate_actions": alert.intervention_plan.immediate_actions,
        "jurisdiction": alert.jurisdiction,
    }


class EscalationWorker:
    """
    Background worker for notification and follow-up jobs.

    Usage:
        worker = EscalationWorker(persistence, notifier, locks, audit)
        worker.start()
        worker.submit(EscalationJob(kind=EscalationJobKind.NOTIFY, ...))
        ...
        await worker.stop()
    """

    def __init__(
        self,
        persistence: Persistence,
        notifier: ProfessionalNotifier,
        locks: KeyedLock,
        audit: AuditLogger,
        max_attempts: int = 5,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 300.0,
        notify_timeout_seconds: float = 5.0,
    ):
        self.persistence = persistence
        self.notifier = notifier
        self.locks = locks
        self.audit = audit
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.notify_timeout_seconds = notify_timeout_seconds

        self._queue: asyncio.Queue[EscalationJob] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._retry_handles: set[asyncio.TimerHandle] = set()

    # ==================================
    # Lifecycle
    # ==================================

    def start(self) -> None:
        """Start processing queued jobs."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="escalation-worker")
            logger.info("Escalation worker started")

    async def stop(self) -> None:
        """Stop the worker and cancel scheduled retries."""
        for handle in self._retry_handles:
            handle.cancel()
        if self._retry_handles or not self._queue.empty():
            logger.warning(
                f"Escalation worker stopping with {self._queue.qsize()} queued and "
                f"{len(self._retry_handles)} scheduled jobs; pending alerts are "
                f"recovered on next start"
            )
        self._retry_handles.clear()

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Escalation worker stopped")

    async def recover(self) -> int:
        """
        Re-submit notification jobs for alerts still marked pending.

        Returns:
            Number of jobs submitted
        """
        count = 0
        for alert in await self.persistence.list_active_alerts():
            if alert.notification_pending:
                self.submit(
                    EscalationJob(
                        kind=EscalationJobKind.NOTIFY,
                        alert_id=alert.id,
                        severity=alert.severity,
                    )
                )
                count += 1
        if count:
            logger.info(f"Recovered {count} pending escalation jobs")
        return count

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    @property
    def scheduled_retries(self) -> int:
        return len(self._retry_handles)

    # ==================================
    # Job Handling
    # ==================================

    def submit(self, job: EscalationJob) -> None:
        """Queue a job for background processing."""
        self._queue.put_nowait(job)

    async def process(self, job: EscalationJob) -> bool:
        """
        Attempt a job once; schedule a retry or hand off on failure.

        Returns:
            True if the job completed
        """
        if await self.attempt(job):
            return True
        await self._handle_failure(job)
        return False

    async def attempt(self, job: EscalationJob) -> bool:
        """Run one attempt of a job. Never raises."""
        job.attempts += 1
        try:
            if job.kind == EscalationJobKind.NOTIFY:
                await self._notify(job)
            else:
                await self._schedule_follow_ups(job)
            return True
        except Exception as e:
            job.last_error = str(e)
            logger.warning(
                f"Escalation job {job.kind.value} for alert={job.alert_id} failed "
                f"(attempt {job.attempts}/{self.max_attempts}): {e}"
            )
            if job.kind == EscalationJobKind.NOTIFY:
                self.audit.log_notification(
                    alert_id=job.alert_id,
                    severity=job.severity.value,
                    delivered=False,
                    attempts=job.attempts,
                    error=str(e),
                )
            return False

    def backoff_delay(self, attempts: int) -> float:
        """Delay before the next attempt after ``attempts`` failures."""
        return min(
            self.backoff_base_seconds * (2 ** max(0, attempts - 1)),
            self.backoff_max_seconds,
        )

    async def _handle_failure(self, job: EscalationJob) -> None:
        if job.attempts >= self.max_attempts:
            await self._give_up(job)
            return

        delay = self.backoff_delay(job.attempts)
        loop = asyncio.get_running_loop()
        job.not_before = loop.time() + delay

        def _requeue() -> None:
            self._retry_handles.discard(handle)
            self._queue.put_nowait(job)

        handle = loop.call_later(delay, _requeue)
        self._retry_handles.add(handle)
        logger.info(
            f"Retrying {job.kind.value} for alert={job.alert_id} in {delay:.1f}s"
        )

    async def dispatch_unsaved(self, alert: CrisisAlert, error: str) -> bool:
        """
        Page for an alert that could not be persisted.

        Nothing in storage can drive a retry for such an alert, so it is
        always put on the manual-intervention queue too, whether or not
        the page went through.

        Args:
            alert: The in-hand alert
            error: Why persisting it failed

        Returns:
            True if the professional was notified
        """
        payload = build_notification_payload(alert)
        payload["persisted"] = False

        delivered = False
        try:
            await asyncio.wait_for(
                self.notifier.notify(alert.id, alert.severity, payload),
                timeout=self.notify_timeout_seconds,
            )
            delivered = True
            alert.notified_severities.append(alert.severity)
            alert.professional_contacts.append(self.notifier.channel)
        except Exception as e:
            error = f"{error}; notification failed: {e}"
            logger.critical(f"Could not page for unsaved alert={alert.id}: {e}")

        alert.notification_pending = not delivered
        self.audit.log_notification(
            alert_id=alert.id,
            severity=alert.severity.value,
            delivered=delivered,
            attempts=1,
            error=None if delivered else error,
            user_id=alert.user_id,
        )

        reason = f"alert not persisted: {error}"
        try:
            await self.persistence.enqueue_manual_intervention(
                ManualInterventionItem(
                    alert_id=alert.id,
                    user_id=alert.user_id,
                    severity=alert.severity,
                    reason=reason,
                    attempts=1,
                )
            )
        except Exception as e:
            logger.critical(
                f"Manual intervention for alert={alert.id} user={alert.user_id} "
                f"severity={alert.severity.value} could not be stored: {e}",
                exc_info=True,
            )
        self.audit.log_manual_intervention(
            alert_id=alert.id,
            user_id=alert.user_id,
            reason=reason,
        )
        return delivered

    async def _give_up(self, job: EscalationJob) -> None:
        alert = await self.persistence.load_alert(job.alert_id)
        user_id = alert.user_id if alert else "unknown"
        reason = f"{job.kind.value} failed after {job.attempts} attempts: {job.last_error}"

        await self.persistence.enqueue_manual_intervention(
            ManualInterventionItem(
                alert_id=job.alert_id,
                user_id=user_id,
                severity=job.severity,
                reason=reason,
                attempts=job.attempts,
            )
        )
        self.audit.log_manual_intervention(
            alert_id=job.alert_id,
            user_id=user_id,
            reason=reason,
        )

    async def _notify(self, job: EscalationJob) -> None:
        alert = await self.persistence.load_alert(job.alert_id)
        if alert is None:
            logger.error(f"Cannot notify for missing alert={job.alert_id}")
            return
        if not alert.is_active:
            logger.info(f"Alert={alert.id} is {alert.status.value}; notification skipped")
            return
        if alert.was_notified_for(job.severity):
            logger.debug(f"Alert={alert.id} already notified at {job.severity.value}")
            return

        await asyncio.wait_for(
            self.notifier.notify(alert.id, job.severity, build_notification_payload(alert)),
            timeout=self.notify_timeout_seconds,
        )

        async with self.locks.hold("alert", alert.id):
            current = await self.persistence.load_alert(alert.id)
            if current is None:
                return
            if job.severity not in current.notified_severities:
                current.notified_severities.append(job.severity)
            if self.notifier.channel not in current.professional_contacts:
                current.professional_contacts.append(self.notifier.channel)
            current.notification_pending = not current.was_notified_for(current.severity)
            await self.persistence.save_alert(current)

        self.audit.log_notification(
            alert_id=alert.id,
            severity=job.severity.value,
            delivered=True,
            attempts=job.attempts,
            user_id=alert.user_id,
        )

    async def _schedule_follow_ups(self, job: EscalationJob) -> None:
        alert = await self.persistence.load_alert(job.alert_id)
        if alert is None:
            logger.error(f"Cannot schedule follow-ups for missing alert={job.alert_id}")
            return

        follow_ups = alert.intervention_plan.follow_up_schedule
        await self.persistence.save_follow_ups(alert.id, follow_ups)
        self.audit.log(
            event_type=AuditEventType.FOLLOW_UPS_SCHEDULED,
            severity=AuditSeverity.INFO,
            action=f"{len(follow_ups)} follow-ups scheduled",
            user_id=alert.user_id,
            alert_id=alert.id,
            details={"timeframes": [f.relative_timeframe for f in follow_ups]},
        )

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.process(job)
            except Exception as e:
                # alert keeps notification_pending and is picked up by recover()
                logger.critical(
                    f"Escalation job for alert={job.alert_id} could not be rescheduled: {e}",
                    exc_info=True,
                )
            finally:
                self._queue.task_done()
