"""
Professional Notification Channel

Pages the on-call crisis professional when an alert is escalated.
Delivery is idempotent per (alert, severity): the same pair always
carries the same idempotency key, so retries never double-page.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from sparq_safety.safety.errors import EscalationDispatchFailure
from sparq_safety.safety.models import Severity

logger = logging.getLogger(__name__)


def idempotency_key(alert_id: str, severity: Severity) -> str:
    """Stable key for one notification of one alert at one severity."""
    return f"{alert_id}:{severity.value}"


class ProfessionalNotifier(ABC):
    """Channel that reaches a human crisis professional."""

    # Recorded on the alert as the professional contact once delivered
    channel: str = "on-call"

    @abstractmethod
    async def notify(self, alert_id: str, severity: Severity, payload: dict) -> None:
        """
        Deliver a notification.

        Raises:
            EscalationDispatchFailure: If the notification was not accepted
        """

    async def close(self) -> None:
        """Release any held connections."""


class WebhookProfessionalNotifier(ProfessionalNotifier):
    """
    Notifier that POSTs alerts to an on-call webhook.

    Endpoint contract:
    - POST {webhook_url} with JSON payload
    - Header Idempotency-Key: {alert_id}:{severity}
    - 2xx means accepted; 409 means already accepted (treated as success)
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        token: Optional[str] = None,
        timeout: float = 5.0,
    ):
        """Initialize notifier.

        Args:
            webhook_url: Endpoint to POST to; every attempt fails when unset
            token: Bearer token for the endpoint
            timeout: Request timeout in seconds
        """
        self.webhook_url = webhook_url
        self.token = token
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

        # Host only; the path and query may carry secrets
        if webhook_url:
            self.channel = f"webhook:{httpx.URL(webhook_url).host}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=headers)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def notify(self, alert_id: str, severity: Severity, payload: dict) -> None:
        if not self.webhook_url:
            raise EscalationDispatchFailure(alert_id, "escalation webhook not configured")

        client = await self._get_client()

        try:
            response = await client.post(
                self.webhook_url,
                json=payload,
                headers={"Idempotency-Key": idempotency_key(alert_id, severity)},
            )
        except httpx.HTTPError as e:
            logger.error(f"Escalation webhook unreachable for alert={alert_id}: {e}")
            raise EscalationDispatchFailure(alert_id, str(e)) from e

        if response.status_code == 409:
            logger.info(f"Escalation for alert={alert_id} already accepted")
            return

        if response.is_error:
            logger.error(
                f"Escalation webhook rejected alert={alert_id}: "
                f"status={response.status_code}"
            )
            raise EscalationDispatchFailure(
                alert_id,
                f"webhook returned {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(f"Escalation delivered for alert={alert_id} severity={severity.value}")
