"""Shared fixtures for safety tests."""

from typing import Optional

import pytest

from sparq_safety.config import Settings
from sparq_safety.infra.notifications import ProfessionalNotifier
from sparq_safety.safety.audit_logger import AuditLogger
from sparq_safety.safety.errors import EscalationDispatchFailure
from sparq_safety.safety.factory import build_coordinator
from sparq_safety.safety.models import Severity
from sparq_safety.safety.persistence import InMemoryPersistence


class RecordingNotifier(ProfessionalNotifier):
    """Notifier that records calls and can be told to fail."""

    def __init__(self, fail_times: int = 0):
        self.calls: list[tuple[str, Severity, dict]] = []
        self.fail_times = fail_times
        self.closed = False

    async def notify(self, alert_id: str, severity: Severity, payload: dict) -> None:
        self.calls.append((alert_id, severity, payload))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise EscalationDispatchFailure(alert_id, "on-call webhook returned 503", status_code=503)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    """Settings with deep analysis off and no external services."""
    return Settings(
        deep_analysis_enabled=False,
        anthropic_api_key=None,
        escalation_webhook_url=None,
        use_database_persistence=False,
        notification_max_attempts=3,
        notification_backoff_base_seconds=60.0,
    )


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def audit() -> AuditLogger:
    return AuditLogger(log_to_stdout=False)


@pytest.fixture
def make_coordinator(settings, persistence, notifier, audit):
    """Build a coordinator on in-memory storage, optionally with a provider."""

    def _make(analysis_provider=None, catalog=None, notifier_override: Optional[ProfessionalNotifier] = None, **overrides):
        app_settings = settings.model_copy(update=overrides) if overrides else settings
        return build_coordinator(
            app_settings,
            persistence=persistence,
            analysis_provider=analysis_provider,
            notifier=notifier_override or notifier,
            catalog=catalog,
            audit=audit,
        )

    return _make


@pytest.fixture
async def coordinator(make_coordinator):
    coordinator = make_coordinator()
    yield coordinator
    await coordinator.escalation.stop()
