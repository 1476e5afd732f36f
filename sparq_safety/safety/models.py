"""
Safety Layer Models

Pydantic models for crisis detection, alerting and safety planning.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from sparq_safety.safety.alert_state import AlertStatus, is_terminal_state


def _utcnow() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


# ==================================
# Enums
# ==================================

class Severity(str, Enum):
    """Ordered crisis severity scale."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_ORDER: list[Severity] = [
    Severity.NONE,
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
]

# Safety-level vocabulary used by the conversational agents
SAFETY_LEVEL_ALIASES: dict[str, Severity] = {
    "safe": Severity.NONE,
    "caution": Severity.LOW,
    "concern": Severity.MEDIUM,
    "crisis": Severity.HIGH,
    "critical": Severity.CRITICAL,
}


def max_severity(values: Iterable[Severity]) -> Severity:
    """Highest severity in ``values`` (NONE when empty)."""
    return max(values, key=lambda s: s.rank, default=Severity.NONE)


def parse_severity(value: str) -> Optional[Severity]:
    """Parse either the severity scale or the safety-level vocabulary."""
    normalized = value.strip().lower()
    try:
        return Severity(normalized)
    except ValueError:
        return SAFETY_LEVEL_ALIASES.get(normalized)


class RiskCategory(str, Enum):
    """Categories of risk indicators found in text."""

    SUICIDAL_IDEATION = "suicidal_ideation"
    SELF_HARM = "self_harm"
    DOMESTIC_VIOLENCE = "domestic_violence"
    SUBSTANCE_ABUSE = "substance_abuse"
    SEVERE_DISTRESS = "severe_distress"
    OTHER = "other"


class CrisisType(str, Enum):
    """Types of crises an alert can represent."""

    SUICIDAL_IDEATION = "suicidal_ideation"
    SELF_HARM = "self_harm"
    DOMESTIC_VIOLENCE = "domestic_violence"
    SUBSTANCE_ABUSE = "substance_abuse"
    MENTAL_HEALTH_CRISIS = "mental_health_crisis"
    OTHER = "other"


CATEGORY_TO_CRISIS_TYPE: dict[RiskCategory, CrisisType] = {
    RiskCategory.SUICIDAL_IDEATION: CrisisType.SUICIDAL_IDEATION,
    RiskCategory.SELF_HARM: CrisisType.SELF_HARM,
    RiskCategory.DOMESTIC_VIOLENCE: CrisisType.DOMESTIC_VIOLENCE,
    RiskCategory.SUBSTANCE_ABUSE: CrisisType.SUBSTANCE_ABUSE,
    RiskCategory.SEVERE_DISTRESS: CrisisType.MENTAL_HEALTH_CRISIS,
    RiskCategory.OTHER: CrisisType.OTHER,
}


class EvaluationContext(str, Enum):
    """Where the evaluated text came from."""

    GENERAL = "general"
    ASSESSMENT = "assessment"
    CRISIS = "crisis"


class Responsible(str, Enum):
    USER = "user"
    PROFESSIONAL = "professional"
    SYSTEM = "system"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FollowUpStatus(str, Enum):
    SCHEDULED = "scheduled"
    DONE = "done"
    MISSED = "missed"


class ReferralUrgency(str, Enum):
    IMMEDIATE = "immediate"
    WITHIN_24H = "within_24h"
    WITHIN_WEEK = "within_week"


class AccessMethod(str, Enum):
    """How a user reached a crisis resource."""

    PHONE = "phone"
    TEXT = "text"
    WEBSITE = "website"
    CHAT = "chat"


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    PENDING = "pending"
    UNVERIFIED = "unverified"


class SafetyPlanReviewStatus(str, Enum):
    NOT_REVIEWED = "not_reviewed"
    PENDING_REVIEW = "pending_review"
    PROFESSIONALLY_REVIEWED = "professionally_reviewed"


# ==================================
# Detection
# ==================================

class RiskIndicator(BaseModel):
    """A single category of risk found in text."""

    model_config = ConfigDict(frozen=True)

    category: RiskCategory
    confidence: float = Field(ge=0.0, le=1.0)
    description: str
    matched_terms: list[str] = Field(default_factory=list)


class DeepAnalysisOpinion(BaseModel):
    """Second opinion returned by a deep analysis provider."""

    model_config = ConfigDict(frozen=True)

    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    requires_intervention: bool = False
    recommended_actions: list[str] = Field(default_factory=list)
    reasoning: str = ""
    provider: str = "unknown"


class SafetyAssessment(BaseModel):
    """Immutable result of evaluating one utterance."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    user_id: str
    couple_id: Optional[str] = None
    severity: Severity
    indicators: list[RiskIndicator] = Field(default_factory=list)
    requires_immediate_intervention: bool = False
    requires_review: bool = False
    confidence: float = Field(ge=0.0, le=1.0)
    context: EvaluationContext = EvaluationContext.GENERAL
    timestamp: datetime = Field(default_factory=_utcnow)
    reasoning: str = ""
    recommended_actions: list[str] = Field(default_factory=list)
    deep_analysis_used: bool = False
    detection_failed: bool = False
    escalating_pattern: bool = False

    @property
    def primary_category(self) -> Optional[RiskCategory]:
        """Category of the most confident indicator."""
        if not self.indicators:
            return None
        return max(self.indicators, key=lambda i: i.confidence).category

    @property
    def crisis_type(self) -> CrisisType:
        """Crisis type implied by the indicators.

        Suicidal ideation and domestic violence take precedence over
        indicator confidence.
        """
        categories = {i.category for i in self.indicators}
        for category in (
            RiskCategory.SUICIDAL_IDEATION,
            RiskCategory.DOMESTIC_VIOLENCE,
        ):
            if category in categories:
                return CATEGORY_TO_CRISIS_TYPE[category]
        primary = self.primary_category
        if primary is None:
            return CrisisType.MENTAL_HEALTH_CRISIS if self.severity > Severity.NONE else CrisisType.OTHER
        return CATEGORY_TO_CRISIS_TYPE[primary]


# ==================================
# Resources
# ==================================

class ContactMethod(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str  # phone, text, chat, website
    value: str
    label: str = ""
    is_primary: bool = False


class ResourceAvailability(BaseModel):
    model_config = ConfigDict(frozen=True)

    hours: str = "24/7"
    languages: list[str] = Field(default_factory=lambda: ["en"])

    @property
    def is_24_7(self) -> bool:
        return self.hours == "24/7"


class ResourceTargeting(BaseModel):
    """Who and where a resource serves."""

    model_config = ConfigDict(frozen=True)

    geo: list[str] = Field(default_factory=list)  # "US", "CA-AB", "INTL"
    demographic: list[str] = Field(default_factory=list)
    crisis_types: list[CrisisType] = Field(default_factory=list)


class CrisisResource(BaseModel):
    """A crisis service the user can be pointed to."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: str  # hotline, text_line, emergency, counseling, shelter
    description: str = ""
    contact_methods: list[ContactMethod] = Field(default_factory=list)
    availability: ResourceAvailability = Field(default_factory=ResourceAvailability)
    targeting: ResourceTargeting = Field(default_factory=ResourceTargeting)
    quality_rating: float = Field(default=0.0, ge=0.0, le=5.0)
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    is_active: bool = True
    crisis_specific: bool = False
    cost: str = "free"

    @property
    def primary_contact(self) -> Optional[ContactMethod]:
        for method in self.contact_methods:
            if method.is_primary:
                return method
        return self.contact_methods[0] if self.contact_methods else None


class ResourceAccess(BaseModel):
    """A user reaching out to a crisis resource, kept for transparency."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    user_id: str
    resource_id: str
    access_method: AccessMethod
    alert_id: Optional[str] = None
    accessed_at: datetime = Field(default_factory=_utcnow)


# ==================================
# Intervention Planning
# ==================================

class FollowUpAction(BaseModel):
    """A scheduled check-in after an alert."""

    relative_timeframe: str
    scheduled_at: datetime
    action: str
    responsible: Responsible
    priority: Priority = Priority.MEDIUM
    status: FollowUpStatus = FollowUpStatus.SCHEDULED
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None


class SafetyPlanItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: float
    description: str
    resources: list[str] = Field(default_factory=list)
    is_emergency_action: bool = False


class EmergencyContact(BaseModel):
    model_config = ConfigDict(frozen=True)

    relationship: str
    contact: str
    notes: str = ""


class ProfessionalReferral(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    urgency: ReferralUrgency
    specialization: list[str] = Field(default_factory=list)


class InterventionPlan(BaseModel):
    immediate_actions: list[str] = Field(default_factory=list)
    resources: list[CrisisResource] = Field(default_factory=list)
    follow_up_schedule: list[FollowUpAction] = Field(default_factory=list)
    safety_plan_steps: list[SafetyPlanItem] = Field(default_factory=list)
    emergency_contacts: list[EmergencyContact] = Field(default_factory=list)
    professional_referrals: list[ProfessionalReferral] = Field(default_factory=list)


# ==================================
# Alerts
# ==================================

class CrisisAlert(BaseModel):
    """One active crisis episode for a user."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    couple_id: Optional[str] = None
    severity: Severity
    type: CrisisType
    indicators: list[RiskIndicator] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    status: AlertStatus = AlertStatus.DETECTED
    intervention_plan: InterventionPlan = Field(default_factory=InterventionPlan)
    professional_contacts: list[str] = Field(default_factory=list)
    notification_pending: bool = False
    notified_severities: list[Severity] = Field(default_factory=list)
    assessment_ids: list[str] = Field(default_factory=list)
    jurisdiction: Optional[str] = None
    resolution_note: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return not is_terminal_state(self.status)

    def was_notified_for(self, severity: Severity) -> bool:
        return severity in self.notified_severities


class EscalationJobKind(str, Enum):
    NOTIFY = "notify"
    SCHEDULE_FOLLOW_UPS = "schedule_follow_ups"


class EscalationJob(BaseModel):
    """Work item owned by the escalation retry worker."""

    kind: EscalationJobKind
    alert_id: str
    severity: Severity
    attempts: int = 0
    not_before: float = 0.0  # loop.time() value
    last_error: Optional[str] = None


class ManualInterventionItem(BaseModel):
    """An alert a human must handle because automated dispatch gave up."""

    id: str = Field(default_factory=_new_id)
    alert_id: str
    user_id: str
    severity: Severity
    reason: str
    attempts: int
    created_at: datetime = Field(default_factory=_utcnow)


# ==================================
# Safety Plans
# ==================================

class SupportContact(BaseModel):
    name: str
    relationship: str
    contact: str
    available_24h: bool = False


class SafetyPlan(BaseModel):
    """Durable per-user safety plan. Each update is a new version."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    couple_id: Optional[str] = None
    warning_signs: list[str] = Field(default_factory=list)
    coping_strategies: list[str] = Field(default_factory=list)
    support_network: list[SupportContact] = Field(default_factory=list)
    professional_contacts: list[str] = Field(default_factory=list)
    crisis_contacts: list[EmergencyContact] = Field(default_factory=list)
    safety_measures: list[str] = Field(default_factory=list)
    review_status: SafetyPlanReviewStatus = SafetyPlanReviewStatus.NOT_REVIEWED
    reviewed_by: Optional[str] = None
    version: int = 1
    created_at: datetime = Field(default_factory=_utcnow)
    last_updated: datetime = Field(default_factory=_utcnow)
    updated_by: str = "system"


class SafetyPlanUpdate(BaseModel):
    """Partial update; ``None`` fields are left unchanged."""

    warning_signs: Optional[list[str]] = None
    coping_strategies: Optional[list[str]] = None
    support_network: Optional[list[SupportContact]] = None
    professional_contacts: Optional[list[str]] = None
    crisis_contacts: Optional[list[EmergencyContact]] = None
    safety_measures: Optional[list[str]] = None
    review_status: Optional[SafetyPlanReviewStatus] = None
    reviewed_by: Optional[str] = None


# ==================================
# Evaluation Result
# ==================================

class SafetyEvaluation(BaseModel):
    """What a caller gets back from an evaluation."""

    assessment: SafetyAssessment
    alert: Optional[CrisisAlert] = None
    resources: list[CrisisResource] = Field(default_factory=list)
    message: str = ""

    @property
    def severity(self) -> Severity:
        return self.assessment.severity

    @property
    def requires_immediate_intervention(self) -> bool:
        return self.assessment.requires_immediate_intervention

    @property
    def requires_review(self) -> bool:
        return self.assessment.requires_review
