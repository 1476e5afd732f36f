"""
Coordinator Factory

Builds the crisis coordinator and its component graph from settings.
Called once at application startup; the result is passed by reference.
"""

import logging
from datetime import timedelta
from typing import Optional

from redis.asyncio import Redis

from sparq_safety.config import Settings
from sparq_safety.infra.claude import ClaudeClient
from sparq_safety.infra.notifications import ProfessionalNotifier, WebhookProfessionalNotifier
from sparq_safety.infra.redis import KeyedLock, MonitoringFlagStore
from sparq_safety.safety.audit_logger import AuditLogger
from sparq_safety.safety.coordinator import CrisisCoordinator
from sparq_safety.safety.deep_analysis import (
    AnalysisProvider,
    ClaudeAnalysisProvider,
    DeepAnalysisGateway,
)
from sparq_safety.safety.escalation import EscalationWorker
from sparq_safety.safety.history_tracker import HistoryTracker
from sparq_safety.safety.indicator_extractor import IndicatorExtractor
from sparq_safety.safety.intervention_planner import InterventionPlanner
from sparq_safety.safety.persistence import InMemoryPersistence, Persistence
from sparq_safety.safety.resource_catalog import ResourceCatalog, StaticResourceCatalog
from sparq_safety.safety.resource_matcher import ResourceMatcher
from sparq_safety.safety.safety_plans import SafetyPlanStore
from sparq_safety.safety.severity_classifier import SeverityClassifier

logger = logging.getLogger(__name__)


def build_analysis_provider(settings: Settings) -> Optional[AnalysisProvider]:
    """Claude provider when deep analysis is switched on and keyed."""
    if not settings.deep_analysis_available:
        logger.info("Deep analysis disabled; rule-based classification only")
        return None
    return ClaudeAnalysisProvider(ClaudeClient.from_settings(settings))


def build_coordinator(
    settings: Settings,
    persistence: Optional[Persistence] = None,
    redis_client: Optional[Redis] = None,
    analysis_provider: Optional[AnalysisProvider] = None,
    notifier: Optional[ProfessionalNotifier] = None,
    catalog: Optional[ResourceCatalog] = None,
    audit: Optional[AuditLogger] = None,
) -> CrisisCoordinator:
    """
    Wire up a CrisisCoordinator.

    Args:
        settings: Application settings
        persistence: Storage backend (in-memory when omitted)
        redis_client: Redis for distributed locks and monitoring flags
        analysis_provider: Deep analysis provider (built from settings when omitted)
        notifier: Professional notifier (webhook from settings when omitted)
        catalog: Resource catalog (static catalog when omitted)
        audit: Audit logger to share

    Returns:
        CrisisCoordinator
    """
    if persistence is None:
        logger.warning("No persistence configured - using in-memory storage")
        persistence = InMemoryPersistence()

    if analysis_provider is None:
        analysis_provider = build_analysis_provider(settings)

    if notifier is None:
        notifier = WebhookProfessionalNotifier(
            settings.escalation_webhook_url,
            token=settings.escalation_webhook_token,
            timeout=settings.notification_timeout_seconds,
        )
        if not settings.escalation_webhook_url:
            logger.error(
                "ESCALATION_WEBHOOK_URL is not set - escalations will land "
                "on the manual-intervention queue"
            )

    audit = audit or AuditLogger()
    locks = KeyedLock(redis_client, timeout_seconds=settings.lock_timeout_seconds)

    history = HistoryTracker(
        persistence,
        locks,
        MonitoringFlagStore(redis_client),
        window_size=settings.history_window_size,
        lookback=timedelta(hours=settings.history_lookback_hours),
        pattern_length=settings.escalation_pattern_length,
        monitoring_threshold=settings.enhanced_monitoring_threshold,
        monitoring_ttl=timedelta(hours=settings.enhanced_monitoring_ttl_hours),
    )

    escalation = EscalationWorker(
        persistence,
        notifier,
        locks,
        audit,
        max_attempts=settings.notification_max_attempts,
        backoff_base_seconds=settings.notification_backoff_base_seconds,
        backoff_max_seconds=settings.notification_backoff_max_seconds,
        notify_timeout_seconds=settings.notification_timeout_seconds,
    )

    return CrisisCoordinator(
        persistence=persistence,
        extractor=IndicatorExtractor(),
        classifier=SeverityClassifier(),
        gateway=DeepAnalysisGateway(
            analysis_provider,
            timeout_seconds=settings.deep_analysis_timeout_seconds,
            length_threshold=settings.deep_analysis_length_threshold,
        ),
        history=history,
        matcher=ResourceMatcher(catalog or StaticResourceCatalog()),
        planner=InterventionPlanner(),
        escalation=escalation,
        safety_plans=SafetyPlanStore(persistence, locks, audit),
        locks=locks,
        audit=audit,
        default_jurisdiction=settings.default_jurisdiction,
        follow_up_grace=timedelta(hours=settings.follow_up_grace_hours),
    )
