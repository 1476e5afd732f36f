"""
Safety Persistence

Storage interface for assessments, history windows, alerts, follow-ups,
safety plans and the manual-intervention queue, plus an in-memory
implementation used in development, tests and degraded mode.
"""

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict, defaultdict, deque
from datetime import datetime
from typing import Optional

from sparq_safety.safety.models import (
    CrisisAlert,
    FollowUpAction,
    FollowUpStatus,
    ManualInterventionItem,
    ResourceAccess,
    SafetyAssessment,
    SafetyPlan,
)

logger = logging.getLogger(__name__)


class Persistence(ABC):
    """Storage used by the crisis coordinator and its components."""

    # Assessments & history

    @abstractmethod
    async def save_assessment(self, assessment: SafetyAssessment) -> None:
        ...

    @abstractmethod
    async def append_to_history(
        self,
        user_id: str,
        assessment: SafetyAssessment,
        window_size: int,
    ) -> None:
        """Append to the user's window, dropping the oldest beyond ``window_size``."""

    @abstractmethod
    async def load_history(self, user_id: str, limit: int) -> list[SafetyAssessment]:
        """Most recent ``limit`` history entries, oldest first."""

    # Alerts

    @abstractmethod
    async def save_alert(self, alert: CrisisAlert) -> None:
        ...

    @abstractmethod
    async def load_alert(self, alert_id: str) -> Optional[CrisisAlert]:
        ...

    @abstractmethod
    async def list_alerts_for_user(
        self,
        user_id: str,
        active_only: bool = True,
    ) -> list[CrisisAlert]:
        """Alerts for a user, newest first."""

    @abstractmethod
    async def list_active_alerts(self) -> list[CrisisAlert]:
        ...

    # Follow-ups

    @abstractmethod
    async def save_follow_ups(self, alert_id: str, follow_ups: list[FollowUpAction]) -> None:
        """Replace the follow-up schedule of an alert."""

    @abstractmethod
    async def load_follow_ups(self, alert_id: str) -> list[FollowUpAction]:
        ...

    @abstractmethod
    async def list_alerts_with_due_follow_ups(self, before: datetime) -> list[str]:
        """Ids of alerts with a still-scheduled follow-up due before ``before``."""

    # Resource access log

    @abstractmethod
    async def record_resource_access(self, access: ResourceAccess) -> None:
        ...

    @abstractmethod
    async def list_resource_access(self, user_id: str) -> list[ResourceAccess]:
        """Resource accesses for a user, oldest first."""

    # Safety plans

    @abstractmethod
    async def save_safety_plan(self, plan: SafetyPlan) -> None:
        """Store a new plan version. Earlier versions are kept."""

    @abstractmethod
    async def load_safety_plan(self, user_id: str) -> Optional[SafetyPlan]:
        """Latest plan version for a user."""

    @abstractmethod
    async def list_safety_plan_versions(self, user_id: str) -> list[SafetyPlan]:
        """All plan versions for a user, oldest first."""

    # Manual intervention queue

    @abstractmethod
    async def enqueue_manual_intervention(self, item: ManualInterventionItem) -> None:
        ...

    @abstractmethod
    async def list_manual_interventions(self) -> list[ManualInterventionItem]:
        ...


class InMemoryPersistence(Persistence):
    """
    Process-local storage.

    Models are copied on the way in and out so callers never share
    mutable state with the store. Stored assessments are capped at
    ``max_assessments``, oldest evicted first; history windows are
    bounded separately.
    """

    def __init__(self, max_assessments: int = 10_000):
        self.max_assessments = max_assessments
        self._assessments: OrderedDict[str, SafetyAssessment] = OrderedDict()
        self._history: dict[str, deque[SafetyAssessment]] = defaultdict(deque)
        self._alerts: dict[str, CrisisAlert] = {}
        self._follow_ups: dict[str, list[FollowUpAction]] = {}
        self._resource_access: dict[str, list[ResourceAccess]] = defaultdict(list)
        self._plans: dict[str, list[SafetyPlan]] = defaultdict(list)
        self._manual_queue: list[ManualInterventionItem] = []

    async def save_assessment(self, assessment: SafetyAssessment) -> None:
        self._assessments[assessment.id] = assessment
        self._assessments.move_to_end(assessment.id)
        while len(self._assessments) > self.max_assessments:
            self._assessments.popitem(last=False)

    async def append_to_history(
        self,
        user_id: str,
        assessment: SafetyAssessment,
        window_size: int,
    ) -> None:
        window = self._history[user_id]
        window.append(assessment)
        while len(window) > window_size:
            window.popleft()

    async def load_history(self, user_id: str, limit: int) -> list[SafetyAssessment]:
        window = self._history.get(user_id)
        if not window:
            return []
        return list(window)[-limit:]

    async def save_alert(self, alert: CrisisAlert) -> None:
        self._alerts[alert.id] = alert.model_copy(deep=True)

    async def load_alert(self, alert_id: str) -> Optional[CrisisAlert]:
        alert = self._alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert else None

    async def list_alerts_for_user(
        self,
        user_id: str,
        active_only: bool = True,
    ) -> list[CrisisAlert]:
        alerts = [
            alert.model_copy(deep=True)
            for alert in self._alerts.values()
            if alert.user_id == user_id and (alert.is_active or not active_only)
        ]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts

    async def list_active_alerts(self) -> list[CrisisAlert]:
        return [alert.model_copy(deep=True) for alert in self._alerts.values() if alert.is_active]

    async def save_follow_ups(self, alert_id: str, follow_ups: list[FollowUpAction]) -> None:
        self._follow_ups[alert_id] = [f.model_copy() for f in follow_ups]

    async def load_follow_ups(self, alert_id: str) -> list[FollowUpAction]:
        return [f.model_copy() for f in self._follow_ups.get(alert_id, [])]

    async def list_alerts_with_due_follow_ups(self, before: datetime) -> list[str]:
        return [
            alert_id
            for alert_id, follow_ups in self._follow_ups.items()
            if any(
                f.status == FollowUpStatus.SCHEDULED and f.scheduled_at < before
                for f in follow_ups
            )
        ]

    async def record_resource_access(self, access: ResourceAccess) -> None:
        self._resource_access[access.user_id].append(access)

    async def list_resource_access(self, user_id: str) -> list[ResourceAccess]:
        return list(self._resource_access.get(user_id, []))

    async def save_safety_plan(self, plan: SafetyPlan) -> None:
        self._plans[plan.user_id].append(plan.model_copy(deep=True))

    async def load_safety_plan(self, user_id: str) -> Optional[SafetyPlan]:
        versions = self._plans.get(user_id)
        if not versions:
            return None
        return versions[-1].model_copy(deep=True)

    async def list_safety_plan_versions(self, user_id: str) -> list[SafetyPlan]:
        return [plan.model_copy(deep=True) for plan in self._plans.get(user_id, [])]

    async def enqueue_manual_intervention(self, item: ManualInterventionItem) -> None:
        self._manual_queue.append(item)
        logger.debug(f"Manual intervention queued for alert={item.alert_id}")

    async def list_manual_interventions(self) -> list[ManualInterventionItem]:
        return list(self._manual_queue)
