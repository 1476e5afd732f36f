"""
Health Check Endpoints

Liveness and readiness for the orchestrator, plus a development-only
view of open crisis work (pending pages, manual-intervention backlog).
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sparq_safety.config import settings
from sparq_safety.infra.database import check_db_health
from sparq_safety.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

# Track application start time for uptime calculation
_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadyResponse(BaseModel):
    """Readiness check response with dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    """Process is up; says nothing about whether alerts can be paged."""
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


class DetailedHealthResponse(BaseModel):
    """Dependencies, config and the escalation backlog."""
    status: str
    timestamp: datetime
    version: str
    environment: str
    uptime_seconds: Optional[float]
    checks: dict[str, str]
    config: dict[str, str]
    escalation: dict[str, int | str]


async def _dependency_checks(request: Request) -> dict[str, str]:
    """
    Check each backing service.

    Database is reported as "disabled" when persistence is in-memory.
    Redis must answer: without it two workers could each open an alert
    for the same user.
    """
    checks = {}

    session_factory = getattr(request.app.state, "session_factory", None)
    if not settings.use_database_persistence:
        checks["database"] = "disabled"
    else:
        try:
            db_ok = await check_db_health(session_factory)
            checks["database"] = "ok" if db_ok else "failed"
        except Exception as e:
            checks["database"] = "error"
            logger.error(f"Readiness check: Database error - {e}")

    try:
        redis_ok = await check_redis_health(getattr(request.app.state, "redis", None))
        checks["redis"] = "ok" if redis_ok else "failed"
    except Exception as e:
        checks["redis"] = "error"
        logger.error(f"Readiness check: Redis error - {e}")

    return checks


async def _escalation_backlog(request: Request) -> dict[str, int | str]:
    """Pending pages and manual-intervention items, or why they are unknown."""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        return {"status": "unavailable"}
    try:
        stats = await coordinator.get_crisis_stats()
    except Exception as e:
        logger.error(f"Detailed health: crisis stats failed - {e}")
        return {"status": "error"}
    return {
        "status": "ok",
        "active_alerts": stats["active_alerts"],
        "pending_notifications": stats["pending_notifications"],
        "manual_interventions": stats["manual_interventions"],
        "queued_jobs": stats["queued_jobs"],
        "scheduled_retries": stats["scheduled_retries"],
    }


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the application is running. Does not check dependencies.",
)
async def health() -> HealthResponse:
    """
    Always 200 while the process runs; see /health/ready for dependencies.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        environment=settings.app_env,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness check",
    description="Checks database and Redis connectivity. Returns 503 if any dependency is unavailable.",
    responses={
        200: {"description": "All dependencies are ready"},
        503: {"description": "One or more dependencies are unavailable"},
    },
)
async def ready(request: Request) -> ReadyResponse:
    """
    Take the instance out of rotation (503) when Redis or the database
    is down, since alerts could then not be locked or stored.
    """
    checks = await _dependency_checks(request)
    all_ok = all(value in ("ok", "disabled") for value in checks.values())
    if not all_ok:
        logger.warning(f"Readiness check failed: {checks}")

    response = ReadyResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )

    if not all_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
    description="Returns 200 if the process is alive. Used for container restart decisions.",
)
async def live() -> LiveResponse:
    """
    Liveness only. An unreachable escalation webhook does not fail it;
    undelivered pages land on the manual-intervention queue instead.
    """
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/detailed",
    response_model=DetailedHealthResponse,
    summary="Detailed health check",
    description="Returns detailed system health. Only available in development.",
    include_in_schema=settings.is_development,
)
async def detailed(request: Request) -> DetailedHealthResponse:
    """
    Dependency checks, safe config and the open escalation backlog.

    Development only.
    """
    if not settings.is_development:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found",
        )

    checks = await _dependency_checks(request)
    escalation = await _escalation_backlog(request)

    # Safe config info (no secrets)
    config = {
        "app_name": settings.app_name,
        "environment": settings.app_env,
        "debug": str(settings.debug),
        "deep_analysis": str(settings.deep_analysis_available),
        "escalation_webhook": "configured" if settings.escalation_webhook_url else "missing",
        "default_jurisdiction": settings.default_jurisdiction,
    }

    all_ok = all(value in ("ok", "disabled") for value in checks.values())

    return DetailedHealthResponse(
        status="healthy" if all_ok else "degraded",
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        environment=settings.app_env,
        uptime_seconds=get_uptime_seconds(),
        checks=checks,
        config=config,
        escalation=escalation,
    )
