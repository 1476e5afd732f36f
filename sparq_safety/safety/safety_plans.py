"""
Safety Plan Store

Durable, versioned per-user safety plans. Plans are never deleted: an
update writes a new version with a bumped ``last_updated``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sparq_safety.infra.redis import KeyedLock
from sparq_safety.safety.audit_logger import AuditEventType, AuditLogger, AuditSeverity
from sparq_safety.safety.intervention_planner import EMERGENCY_CONTACTS
from sparq_safety.safety.models import SafetyPlan, SafetyPlanUpdate
from sparq_safety.safety.persistence import Persistence

logger = logging.getLogger(__name__)


DEFAULT_COPING_STRATEGIES = [
    "Deep breathing: in for 4, hold for 4, out for 6",
    "Grounding: name 5 things you can see, 4 you can hear, 3 you can touch",
    "Take a short walk or change rooms",
    "Write down what you are feeling",
]

DEFAULT_SAFETY_MEASURES = [
    "Keep crisis numbers saved in your phone",
    "Identify a safe place you can go to",
]


class SafetyPlanStore:
    """
    Versioned safety plans.

    Usage:
        store = SafetyPlanStore(persistence, locks, audit)
        plan = await store.get_or_create("user_123")
        plan = await store.update("user_123", SafetyPlanUpdate(...), updated_by="user_123")
    """

    def __init__(self, persistence: Persistence, locks: KeyedLock, audit: AuditLogger):
        self.persistence = persistence
        self.locks = locks
        self.audit = audit

    async def get(self, user_id: str) -> Optional[SafetyPlan]:
        return await self.persistence.load_safety_plan(user_id)

    async def get_or_create(self, user_id: str, couple_id: Optional[str] = None) -> SafetyPlan:
        """
        Return the user's current plan, creating a default one if needed.

        Args:
            user_id: User identifier
            couple_id: Couple identifier recorded on a newly created plan

        Returns:
            Latest SafetyPlan version
        """
        async with self.locks.hold("safety_plan", user_id):
            plan = await self.persistence.load_safety_plan(user_id)
            if plan is not None:
                return plan

            plan = SafetyPlan(
                user_id=user_id,
                couple_id=couple_id,
                coping_strategies=list(DEFAULT_COPING_STRATEGIES),
                crisis_contacts=list(EMERGENCY_CONTACTS),
                safety_measures=list(DEFAULT_SAFETY_MEASURES),
            )
            await self.persistence.save_safety_plan(plan)

        self.audit.log(
            event_type=AuditEventType.SAFETY_PLAN_CREATED,
            severity=AuditSeverity.INFO,
            action="Safety plan created",
            user_id=user_id,
            couple_id=couple_id,
            details={"plan_id": plan.id, "version": plan.version},
        )
        logger.info(f"Safety plan created for user={user_id}")
        return plan

    async def update(
        self,
        user_id: str,
        changes: SafetyPlanUpdate,
        updated_by: str,
    ) -> SafetyPlan:
        """
        Supersede the current plan with a new version.

        Args:
            user_id: User identifier
            changes: Fields to replace; unset fields are kept
            updated_by: Who made the change (user id, professional id or "system")

        Returns:
            The new SafetyPlan version
        """
        current = await self.get_or_create(user_id)

        async with self.locks.hold("safety_plan", user_id):
            # Re-read under the lock so concurrent updates chain versions
            current = await self.persistence.load_safety_plan(user_id) or current
            data = current.model_dump()
            data.update(changes.model_dump(exclude_none=True))
            data.update(
                version=current.version + 1,
                last_updated=_later_than(current.last_updated),
                updated_by=updated_by,
            )
            plan = SafetyPlan.model_validate(data)
            await self.persistence.save_safety_plan(plan)

        self.audit.log(
            event_type=AuditEventType.SAFETY_PLAN_UPDATED,
            severity=AuditSeverity.INFO,
            action=f"Safety plan updated to version {plan.version}",
            user_id=user_id,
            details={
                "plan_id": plan.id,
                "version": plan.version,
                "fields": sorted(changes.model_dump(exclude_none=True)),
                "updated_by": updated_by,
            },
        )
        return plan

    async def add_warning_signs(self, user_id: str, signs: list[str]) -> Optional[SafetyPlan]:
        """Record newly observed warning signs; no new version if none are new."""
        current = await self.get_or_create(user_id)
        new_signs = [sign for sign in signs if sign not in current.warning_signs]
        if not new_signs:
            return None
        return await self.update(
            user_id,
            SafetyPlanUpdate(warning_signs=current.warning_signs + new_signs),
            updated_by="system",
        )

    async def history(self, user_id: str) -> list[SafetyPlan]:
        """All versions of a user's plan, oldest first."""
        return await self.persistence.list_safety_plan_versions(user_id)


def _later_than(previous: datetime) -> datetime:
    if previous.tzinfo is None:
        previous = previous.replace(tzinfo=timezone.utc)
    return max(datetime.now(timezone.utc), previous + timedelta(microseconds=1))
