"""
Safety API Endpoints.

Crisis evaluation, alert management and safety plans.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from sparq_safety.api.dependencies import get_coordinator
from sparq_safety.safety.coordinator import CrisisCoordinator
from sparq_safety.safety.models import (
    AccessMethod,
    CrisisAlert,
    CrisisResource,
    EvaluationContext,
    FollowUpAction,
    ResourceAccess,
    SafetyPlan,
    SafetyPlanUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/safety", tags=["Safety"])


class EvaluateRequest(BaseModel):
    """Text to evaluate for crisis risk."""

    user_id: str = Field(
        ...,
        max_length=255,
        description="User who wrote the text",
        examples=["user_123"],
    )
    couple_id: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Couple the user belongs to",
    )
    text: str = Field(
        ...,
        max_length=10000,
        description="Utterance to evaluate; never stored",
        examples=["I feel like I can't go on"],
    )
    context: EvaluationContext = Field(
        default=EvaluationContext.GENERAL,
        description="Where the text came from",
    )
    jurisdiction: Optional[str] = Field(
        default=None,
        max_length=20,
        description="Geo hint for resources, e.g. US or CA-AB",
        examples=["US"],
    )


class IndicatorSummary(BaseModel):
    category: str
    confidence: float


class EvaluateResponse(BaseModel):
    """Safety answer for one utterance."""

    assessment_id: str
    severity: str
    confidence: float
    requires_immediate_intervention: bool
    requires_review: bool
    escalating_pattern: bool
    detection_failed: bool
    deep_analysis_used: bool
    indicators: list[IndicatorSummary]
    recommended_actions: list[str]
    resources: list[CrisisResource]
    alert: Optional[CrisisAlert] = None
    message: str
    timestamp: datetime


class AlertNoteRequest(BaseModel):
    """Note attached when closing an alert."""

    note: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Resolution or hand-off note (no user text)",
    )


class FollowUpCompleteRequest(BaseModel):
    """Who carried out a follow-up check-in."""

    completed_by: str = Field(..., min_length=1, max_length=255)


class ResourceAccessRequest(BaseModel):
    """A user reaching out to a crisis resource."""

    user_id: str = Field(..., min_length=1, max_length=255)
    access_method: AccessMethod
    alert_id: Optional[str] = Field(default=None, max_length=36)


class SafetyPlanPatch(SafetyPlanUpdate):
    """Safety plan changes plus who made them."""

    updated_by: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="User id, professional id or 'system'",
    )


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str | dict] = None


# ==================================
# Evaluation
# ==================================

@router.post(
    "/evaluate",
    response_model=EvaluateResponse,
    status_code=status.HTTP_200_OK,
    summary="Evaluate text for crisis risk",
    responses={
        200: {"description": "Safety evaluation"},
        422: {"model": ErrorResponse, "description": "Missing user_id or text"},
    },
)
async def evaluate(
    request: EvaluateRequest,
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> EvaluateResponse:
    """
    Evaluate one utterance.

    Always answers with a severity and a non-empty resource list; any
    internal detection failure yields a cautious medium/review answer.
    """
    evaluation = await coordinator.evaluate(
        user_id=request.user_id,
        couple_id=request.couple_id,
        text=request.text,
        context=request.context,
        jurisdiction=request.jurisdiction,
    )
    assessment = evaluation.assessment

    return EvaluateResponse(
        assessment_id=assessment.id,
        severity=assessment.severity.value,
        confidence=assessment.confidence,
        requires_immediate_intervention=assessment.requires_immediate_intervention,
        requires_review=assessment.requires_review,
        escalating_pattern=assessment.escalating_pattern,
        detection_failed=assessment.detection_failed,
        deep_analysis_used=assessment.deep_analysis_used,
        indicators=[
            IndicatorSummary(category=i.category.value, confidence=i.confidence)
            for i in assessment.indicators
        ],
        recommended_actions=assessment.recommended_actions,
        resources=evaluation.resources,
        alert=evaluation.alert,
        message=evaluation.message,
        timestamp=assessment.timestamp,
    )


# ==================================
# Alerts
# ==================================

@router.get(
    "/alerts",
    response_model=list[CrisisAlert],
    summary="Active alerts for a user",
)
async def list_alerts(
    user_id: str = Query(..., min_length=1, description="User identifier"),
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> list[CrisisAlert]:
    return await coordinator.get_active_alerts(user_id)


@router.get(
    "/alerts/stats",
    response_model=dict,
    summary="Open crisis work",
    description="Active alerts by severity and status, pending notifications and manual queue length.",
)
async def alert_stats(
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> dict:
    return await coordinator.get_crisis_stats()


@router.get(
    "/alerts/{alert_id}",
    response_model=CrisisAlert,
    summary="Get an alert",
    responses={404: {"model": ErrorResponse, "description": "Alert not found"}},
)
async def get_alert(
    alert_id: str,
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> CrisisAlert:
    return await coordinator.get_alert(alert_id)


@router.get(
    "/alerts/{alert_id}/follow-ups",
    response_model=list[FollowUpAction],
    summary="Scheduled follow-ups for an alert",
)
async def get_follow_ups(
    alert_id: str,
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> list[FollowUpAction]:
    await coordinator.get_alert(alert_id)
    return await coordinator.get_follow_ups(alert_id)


@router.post(
    "/alerts/{alert_id}/resolve",
    response_model=CrisisAlert,
    summary="Resolve an alert",
    responses={
        404: {"model": ErrorResponse, "description": "Alert not found"},
        409: {"model": ErrorResponse, "description": "Alert already closed"},
    },
)
async def resolve_alert(
    alert_id: str,
    request: AlertNoteRequest,
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> CrisisAlert:
    return await coordinator.resolve_alert(alert_id, request.note)


@router.post(
    "/alerts/{alert_id}/transfer",
    response_model=CrisisAlert,
    summary="Hand an alert off to an outside professional",
    responses={
        404: {"model": ErrorResponse, "description": "Alert not found"},
        409: {"model": ErrorResponse, "description": "Alert already closed"},
    },
)
async def transfer_alert(
    alert_id: str,
    request: AlertNoteRequest,
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> CrisisAlert:
    return await coordinator.transfer_alert(alert_id, request.note)


@router.post(
    "/alerts/{alert_id}/follow-ups/{index}/complete",
    response_model=FollowUpAction,
    summary="Mark a follow-up done",
    responses={404: {"model": ErrorResponse, "description": "Alert or follow-up not found"}},
)
async def complete_follow_up(
    alert_id: str,
    index: int,
    request: FollowUpCompleteRequest,
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> FollowUpAction:
    return await coordinator.complete_follow_up(alert_id, index, request.completed_by)


# ==================================
# Resource Access
# ==================================

@router.post(
    "/resources/{resource_id}/access",
    response_model=ResourceAccess,
    status_code=status.HTTP_201_CREATED,
    summary="Record that a user reached out to a resource",
    responses={404: {"model": ErrorResponse, "description": "Alert not found"}},
)
async def record_resource_access(
    resource_id: str,
    request: ResourceAccessRequest,
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> ResourceAccess:
    return await coordinator.record_resource_access(
        user_id=request.user_id,
        resource_id=resource_id,
        access_method=request.access_method,
        alert_id=request.alert_id,
    )


@router.get(
    "/resources/access",
    response_model=list[ResourceAccess],
    summary="Resources a user has reached out to",
)
async def list_resource_access(
    user_id: str = Query(..., min_length=1, description="User identifier"),
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> list[ResourceAccess]:
    return await coordinator.get_resource_access(user_id)


# ==================================
# Safety Plans
# ==================================

@router.get(
    "/plans/{user_id}",
    response_model=SafetyPlan,
    summary="Current safety plan",
    description="Returns the latest version, creating a default plan on first access.",
)
async def get_safety_plan(
    user_id: str,
    couple_id: Optional[str] = Query(default=None),
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> SafetyPlan:
    return await coordinator.get_or_create_safety_plan(user_id, couple_id)


@router.patch(
    "/plans/{user_id}",
    response_model=SafetyPlan,
    summary="Update a safety plan",
    description="Writes a new version; earlier versions are kept.",
)
async def update_safety_plan(
    user_id: str,
    request: SafetyPlanPatch,
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> SafetyPlan:
    changes = SafetyPlanUpdate.model_validate(
        request.model_dump(exclude={"updated_by"}, exclude_none=True)
    )
    return await coordinator.update_safety_plan(user_id, changes, request.updated_by)


@router.get(
    "/plans/{user_id}/history",
    response_model=list[SafetyPlan],
    summary="All versions of a safety plan",
)
async def safety_plan_history(
    user_id: str,
    coordinator: CrisisCoordinator = Depends(get_coordinator),
) -> list[SafetyPlan]:
    return await coordinator.get_safety_plan_history(user_id)
