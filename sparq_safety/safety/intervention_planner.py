"""
Intervention Planning

Builds the intervention plan attached to a crisis alert: immediate
actions, safety-plan steps, emergency contacts, professional referrals
and a follow-up schedule anchored on the alert's creation time.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Optional

from sparq_safety.safety.models import (
    CrisisResource,
    CrisisType,
    EmergencyContact,
    FollowUpAction,
    InterventionPlan,
    Priority,
    ProfessionalReferral,
    ReferralUrgency,
    Responsible,
    SafetyPlanItem,
    Severity,
)

logger = logging.getLogger(__name__)


EMERGENCY_ACTION = "Contact emergency services (911) if you are in immediate danger"
PHYSICAL_SAFETY_ACTION = "Get to a physically safe location away from the person harming you"


# ==================================
# Immediate Actions
# ==================================

IMMEDIATE_ACTIONS: dict[Severity, list[str]] = {
    Severity.CRITICAL: [
        "Call the 988 Suicide & Crisis Lifeline or text HOME to 741741",
        "Stay with someone you trust; do not stay alone",
        "Remove access to means of self-harm",
    ],
    Severity.HIGH: [
        "Reach out to a crisis counselor today",
        "Tell a trusted person how you are feeling",
        "Use your safety plan and coping strategies",
    ],
    Severity.MEDIUM: [
        "Consider talking to a mental health professional",
        "Use coping strategies that have helped before",
    ],
    Severity.LOW: [
        "Check in with yourself and notice how you are feeling",
    ],
    Severity.NONE: [],
}

GENERIC_ACTIONS = [
    "Keep crisis resources somewhere easy to find",
]


# ==================================
# Follow-up Schedules
# ==================================

# (relative timeframe, action, responsible, priority)
FOLLOW_UP_SCHEDULES: dict[Severity, list[tuple[str, str, Responsible, Priority]]] = {
    Severity.CRITICAL: [
        ("1 hour", "Professional check-in on immediate safety", Responsible.PROFESSIONAL, Priority.HIGH),
        ("24 hours", "Follow-up assessment with crisis counselor", Responsible.PROFESSIONAL, Priority.HIGH),
        ("3 days", "Review safety plan effectiveness", Responsible.PROFESSIONAL, Priority.MEDIUM),
        ("1 week", "Ongoing support and treatment planning", Responsible.PROFESSIONAL, Priority.MEDIUM),
    ],
    Severity.HIGH: [
        ("6 hours", "Check-in on wellbeing and safety", Responsible.PROFESSIONAL, Priority.HIGH),
        ("24 hours", "Review coping strategies and safety plan", Responsible.PROFESSIONAL, Priority.MEDIUM),
        ("1 week", "Assess progress and next steps", Responsible.PROFESSIONAL, Priority.MEDIUM),
    ],
    Severity.MEDIUM: [
        ("24 hours", "Self-check on mood and coping", Responsible.USER, Priority.MEDIUM),
        ("1 week", "Reflect on progress and consider professional support", Responsible.USER, Priority.LOW),
    ],
    Severity.LOW: [
        ("24 hours", "Self-check on mood and coping", Responsible.USER, Priority.LOW),
        ("1 week", "Reflect on progress", Responsible.USER, Priority.LOW),
    ],
    Severity.NONE: [],
}

_TIMEFRAME = re.compile(r"^\s*(\d+)\s*(hour|day|week)s?\s*$", re.IGNORECASE)
_UNIT_HOURS = {"hour": 1, "day": 24, "week": 24 * 7}


def parse_timeframe(timeframe: str) -> timedelta:
    """
    Parse "6 hours", "1 day", "3 days", "1 week" into a timedelta.

    Raises:
        ValueError: On any other format
    """
    match = _TIMEFRAME.match(timeframe)
    if not match:
        raise ValueError(f"Unsupported timeframe: {timeframe!r}")
    amount = int(match.group(1))
    unit = match.group(2).lower()
    return timedelta(hours=amount * _UNIT_HOURS[unit])


# ==================================
# Emergency Contacts
# ==================================

EMERGENCY_CONTACTS = [
    EmergencyContact(relationship="Emergency Services", contact="911", notes="For immediate danger"),
    EmergencyContact(relationship="Suicide & Crisis Lifeline", contact="988", notes="Call or text, 24/7"),
    EmergencyContact(relationship="Crisis Text Line", contact="741741", notes="Text HOME"),
    EmergencyContact(
        relationship="National Domestic Violence Hotline",
        contact="1-800-799-7233",
        notes="Confidential, 24/7",
    ),
]


class InterventionPlanner:
    """
    Produces intervention plans.

    Deterministic: the same inputs always produce the same plan, and
    every follow-up is scheduled at exactly created_at + its timeframe.
    """

    def plan(
        self,
        severity: Severity,
        crisis_type: CrisisType,
        created_at: datetime,
        resources: Optional[list[CrisisResource]] = None,
    ) -> InterventionPlan:
        """
        Build an intervention plan.

        Args:
            severity: Alert severity
            crisis_type: Alert crisis type
            created_at: Alert creation time (follow-up anchor)
            resources: Matched resources to attach

        Returns:
            InterventionPlan
        """
        return InterventionPlan(
            immediate_actions=self.immediate_actions(severity, crisis_type),
            resources=list(resources or []),
            follow_up_schedule=self.follow_up_schedule(severity, created_at),
            safety_plan_steps=self.safety_plan_steps(crisis_type),
            emergency_contacts=list(EMERGENCY_CONTACTS),
            professional_referrals=self.professional_referrals(severity, crisis_type),
        )

    def immediate_actions(self, severity: Severity, crisis_type: CrisisType) -> list[str]:
        actions = []
        if severity == Severity.CRITICAL:
            actions.append(EMERGENCY_ACTION)
        if crisis_type == CrisisType.DOMESTIC_VIOLENCE:
            actions.append(PHYSICAL_SAFETY_ACTION)
        actions.extend(IMMEDIATE_ACTIONS[severity])
        if severity > Severity.NONE:
            actions.extend(GENERIC_ACTIONS)
        return actions

    def follow_up_schedule(self, severity: Severity, created_at: datetime) -> list[FollowUpAction]:
        return [
            FollowUpAction(
                relative_timeframe=timeframe,
                scheduled_at=created_at + parse_timeframe(timeframe),
                action=action,
                responsible=responsible,
                priority=priority,
            )
            for timeframe, action, responsible, priority in FOLLOW_UP_SCHEDULES[severity]
        ]

    def safety_plan_steps(self, crisis_type: CrisisType) -> list[SafetyPlanItem]:
        steps = [
            SafetyPlanItem(
                step=1,
                description="Recognize your personal warning signs",
                resources=["Safety plan worksheet"],
            ),
            SafetyPlanItem(
                step=2,
                description="Use internal coping strategies: breathing, grounding, movement",
            ),
            SafetyPlanItem(
                step=3,
                description="Reach out to people and places that help you feel better",
            ),
            SafetyPlanItem(
                step=4,
                description="Contact a professional or crisis line",
                resources=["988", "741741"],
            ),
            SafetyPlanItem(
                step=5,
                description="Make your environment safe by limiting access to means",
                is_emergency_action=True,
            ),
        ]

        if crisis_type == CrisisType.DOMESTIC_VIOLENCE:
            steps.insert(
                0,
                SafetyPlanItem(
                    step=0,
                    description="Go to a safe location and keep a bag with essentials ready",
                    resources=["1-800-799-7233"],
                    is_emergency_action=True,
                ),
            )
        elif crisis_type == CrisisType.SUBSTANCE_ABUSE:
            index = next(i for i, s in enumerate(steps) if s.step == 3)
            steps.insert(
                index,
                SafetyPlanItem(
                    step=2.5,
                    description="Avoid substances and the places or people that trigger use",
                    resources=["1-800-662-4357"],
                ),
            )

        return steps

    def professional_referrals(
        self,
        severity: Severity,
        crisis_type: CrisisType,
    ) -> list[ProfessionalReferral]:
        if severity == Severity.NONE:
            return []

        if severity == Severity.CRITICAL:
            urgency = ReferralUrgency.IMMEDIATE
        elif severity == Severity.HIGH:
            urgency = ReferralUrgency.WITHIN_24H
        else:
            urgency = ReferralUrgency.WITHIN_WEEK

        referrals = []
        if severity >= Severity.HIGH:
            referrals.append(
                ProfessionalReferral(
                    type="crisis_counselor",
                    urgency=urgency,
                    specialization=["crisis_intervention"],
                )
            )
        referrals.append(
            ProfessionalReferral(
                type="therapist",
                urgency=urgency,
                specialization=["relationships", "trauma_informed_care"],
            )
        )

        if crisis_type == CrisisType.SUICIDAL_IDEATION:
            referrals.append(
                ProfessionalReferral(
                    type="psychiatrist",
                    urgency=urgency,
                    specialization=["suicide_prevention", "medication_management"],
                )
            )
        elif crisis_type == CrisisType.DOMESTIC_VIOLENCE:
            referrals.append(
                ProfessionalReferral(
                    type="social_worker",
                    urgency=urgency,
                    specialization=["domestic_violence", "safety_planning"],
                )
            )
        elif crisis_type == CrisisType.SUBSTANCE_ABUSE:
            referrals.append(
                ProfessionalReferral(
                    type="medical_doctor",
                    urgency=urgency,
                    specialization=["addiction_medicine"],
                )
            )

        return referrals
