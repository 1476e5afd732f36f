"""
Deep Analysis Gateway

Optional second opinion from a language model for ambiguous or elevated
cases. The call is bounded by a hard timeout; a slow or failing provider
means "no opinion" and the rule-based result stands.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from sparq_safety.infra.claude import ClaudeClient
from sparq_safety.safety.errors import AnalysisTimeout
from sparq_safety.safety.models import (
    DeepAnalysisOpinion,
    EvaluationContext,
    Severity,
    parse_severity,
)

logger = logging.getLogger(__name__)


class AnalysisProvider(ABC):
    """Something that can give a severity opinion on a piece of text."""

    name: str = "provider"

    @abstractmethod
    async def analyze(
        self,
        text: str,
        context: EvaluationContext,
    ) -> DeepAnalysisOpinion:
        """Return an opinion or raise."""

    async def close(self) -> None:
        """Release any held clients."""


# ==================================
# Claude Provider
# ==================================

ANALYSIS_SYSTEM_PROMPT = """You are a crisis intervention specialist reviewing a message \
from a relationship-coaching app. Assess the user's immediate safety. Be cautious: when in \
doubt, rate higher. Do not give advice to the user; you are writing for a clinician."""

ANALYSIS_PROMPT_TEMPLATE = """Analyze this message for safety concerns.

Context: {context}
Message: "{text}"

Start your answer with a line of the form
SEVERITY: <none|low|medium|high|critical>

Then answer:
1. Is there any indication of suicidal ideation or self-harm?
2. Are there signs of domestic violence or abuse?
3. Is there evidence of severe mental health crisis?
4. Does this require immediate professional intervention? (yes/no)
5. Should emergency services be contacted? (yes/no)
6. What resources would be most helpful (crisis hotline, emergency services, professional counseling, safety plan, monitoring)?"""

_SEVERITY_LINE = re.compile(r"severity[*_\s]*:[*_\s]*([a-z]+)", re.IGNORECASE)
_YES_NO_PROMPT = re.compile(r"\(\s*yes\s*/\s*no\s*\)", re.IGNORECASE)
_YES_INTERVENTION = re.compile(
    r"(immediate\s+professional\s+intervention|emergency\s+services\s+be\s+contacted)"
    r"\s*\??\s*[:\-]?[*_\s]*\(?\s*yes\b",
    re.IGNORECASE,
)
# Prompt questions a model may echo back before answering
_PROMPT_QUESTIONS = re.compile(
    r"does this require immediate professional intervention\s*\??"
    r"|should emergency services be contacted\s*\??"
    r"|what resources would be most helpful\s*(\([^)]*\))?\s*\??",
    re.IGNORECASE,
)

# Substring -> recommended action
ACTION_KEYWORDS: list[tuple[str, str]] = [
    ("crisis hotline", "Contact crisis hotline"),
    ("emergency services", "Contact emergency services if in immediate danger"),
    ("professional", "Seek professional counseling"),
    ("safety plan", "Review or create a safety plan"),
    ("monitoring", "Increase check-in frequency"),
]


def parse_analysis_text(content: str, provider: str = "claude") -> DeepAnalysisOpinion:
    """
    Extract an opinion from free-text model output.

    Prefers an explicit ``SEVERITY:`` line (either vocabulary). Otherwise
    falls back to keyword checks: a "yes" to the intervention or
    emergency questions means critical, "immediate" means high and
    "professional intervention" means medium. Echoed prompt questions
    never count as an answer.
    """
    answers = _YES_NO_PROMPT.sub("", content)
    requires_intervention = bool(_YES_INTERVENTION.search(answers))
    lowered = _PROMPT_QUESTIONS.sub("", answers).lower()

    severity: Optional[Severity] = None
    match = _SEVERITY_LINE.search(content)
    if match:
        severity = parse_severity(match.group(1))

    if severity is None:
        if requires_intervention:
            severity = Severity.CRITICAL
        elif "immediate" in lowered:
            severity = Severity.HIGH
        elif "professional intervention" in lowered:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW

    actions = [action for keyword, action in ACTION_KEYWORDS if keyword in lowered]

    return DeepAnalysisOpinion(
        severity=severity,
        confidence=0.8 if match else 0.6,
        requires_intervention=requires_intervention,
        recommended_actions=actions,
        reasoning=content.strip()[:1000],
        provider=provider,
    )


class ClaudeAnalysisProvider(AnalysisProvider):
    """Deep analysis backed by the Anthropic API."""

    name = "claude"

    def __init__(self, client: ClaudeClient, max_tokens: int = 600):
        self.client = client
        self.max_tokens = max_tokens

    async def analyze(
        self,
        text: str,
        context: EvaluationContext,
    ) -> DeepAnalysisOpinion:
        response = await self.client.complete(
            prompt=ANALYSIS_PROMPT_TEMPLATE.format(context=context.value, text=text),
            system_prompt=ANALYSIS_SYSTEM_PROMPT,
            max_tokens=self.max_tokens,
            temperature=0.0,
        )
        logger.debug(
            f"Deep analysis completed model={response.model} "
            f"latency={response.latency_ms:.0f}ms"
        )
        return parse_analysis_text(response.text, provider=self.name)

    async def close(self) -> None:
        await self.client.close()


# ==================================
# Gateway
# ==================================

class DeepAnalysisGateway:
    """
    Decides when to ask for a second opinion and bounds how long it takes.

    Usage:
        gateway = DeepAnalysisGateway(provider, timeout_seconds=4.0)
        if gateway.should_analyze(severity, context, text, under_monitoring):
            opinion = await gateway.analyze(text, context)
    """

    def __init__(
        self,
        provider: Optional[AnalysisProvider],
        timeout_seconds: float = 4.0,
        length_threshold: int = 500,
    ):
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.length_threshold = length_threshold

    @property
    def enabled(self) -> bool:
        return self.provider is not None

    def should_analyze(
        self,
        severity: Severity,
        context: EvaluationContext,
        text: str,
        under_monitoring: bool = False,
    ) -> bool:
        """Check whether this evaluation warrants a deep analysis call."""
        if not self.enabled:
            return False
        return (
            severity >= Severity.MEDIUM
            or context == EvaluationContext.CRISIS
            or len(text) > self.length_threshold
            or under_monitoring
        )

    async def analyze(
        self,
        text: str,
        context: EvaluationContext,
    ) -> Optional[DeepAnalysisOpinion]:
        """
        Get an opinion within the time budget.

        Returns:
            The provider's opinion, or None on timeout or any failure
        """
        if self.provider is None:
            return None

        try:
            return await self._bounded(text, context)
        except AnalysisTimeout as e:
            logger.warning(f"{e} (provider={self.provider.name})")
            return None
        except Exception as e:
            logger.error(f"Deep analysis failed (provider={self.provider.name}): {e}")
            return None

    async def _bounded(self, text: str, context: EvaluationContext) -> DeepAnalysisOpinion:
        try:
            return await asyncio.wait_for(
                self.provider.analyze(text, context),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise AnalysisTimeout(
                f"Deep analysis timed out after {self.timeout_seconds}s"
            ) from e
