"""
Claude API Client

Thin async wrapper over the Anthropic SDK for deep crisis analysis.
Retries and the fallback model share one time budget so a slow API
never holds up an evaluation past the analysis deadline. Prompts carry
user text and are never logged.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import APIConnectionError, APIError, AsyncAnthropic, RateLimitError

from sparq_safety.config import Settings

logger = logging.getLogger(__name__)


class ClaudeClientError(Exception):
    """Raised when no usable completion came back within the budget."""


@dataclass
class ClaudeResponse:
    text: str
    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: float
    truncated: bool = False


def response_text(response: Any) -> str:
    """Concatenate the text blocks of a Messages API response."""
    return "".join(
        block.text for block in response.content if getattr(block, "type", None) == "text"
    ).strip()


class ClaudeClient:
    """
    Async Claude client for analysis prompts.

    Usage:
        client = ClaudeClient.from_settings(settings)
        response = await client.complete(prompt, system_prompt=SYSTEM)
    """

    def __init__(
        self,
        api_key: str,
        default_model: str,
        fallback_model: Optional[str] = None,
        max_retries: int = 2,
        budget_seconds: Optional[float] = None,
    ):
        """
        Args:
            api_key: Anthropic API key
            default_model: Model used unless a call names another
            fallback_model: Model tried when the default fails
            max_retries: Attempts per model on rate limit or connection errors
            budget_seconds: Wall-clock limit shared by retries and fallback
        """
        if not api_key:
            raise ValueError("Anthropic API key is required")

        self._client = AsyncAnthropic(api_key=api_key)
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._max_retries = max_retries
        self._budget_seconds = budget_seconds

        logger.info(
            f"ClaudeClient ready: model={default_model} fallback={fallback_model}"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClaudeClient":
        return cls(
            api_key=settings.anthropic_api_key or "",
            default_model=settings.claude_analysis_model,
            fallback_model=settings.claude_fallback_model,
            budget_seconds=settings.deep_analysis_timeout_seconds,
        )

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 600,
        temperature: float = 0.0,
    ) -> ClaudeResponse:
        """
        Run one analysis prompt, falling back to the second model on failure.

        Args:
            prompt: User message (contains user text; never logged)
            system_prompt: System prompt
            max_tokens: Maximum tokens in the answer
            temperature: Sampling temperature

        Returns:
            ClaudeResponse

        Raises:
            ClaudeClientError: If neither model answered within the budget
        """
        started = time.monotonic()
        deadline = started + self._budget_seconds if self._budget_seconds else None
        models = [self._default_model]
        if self._fallback_model and self._fallback_model != self._default_model:
            models.append(self._fallback_model)

        last_error: Optional[Exception] = None
        for model in models:
            if deadline is not None and time.monotonic() >= deadline:
                break
            try:
                response = await self._call_with_retry(
                    model=model,
                    messages=[{"role": "user", "content": prompt}],
                    system=system_prompt,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    deadline=deadline,
                )
            except Exception as e:
                last_error = e
                logger.warning(f"Claude model={model} failed: {type(e).__name__}")
                continue

            text = response_text(response)
            if not text:
                last_error = ClaudeClientError(f"{model} returned no text")
                logger.warning(f"Claude model={model} returned no text")
                continue

            latency_ms = (time.monotonic() - started) * 1000
            logger.debug(
                f"Claude model={model} tokens={response.usage.input_tokens}/"
                f"{response.usage.output_tokens} latency={latency_ms:.0f}ms"
            )
            return ClaudeResponse(
                text=text,
                model=model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                latency_ms=latency_ms,
                truncated=response.stop_reason == "max_tokens",
            )

        raise ClaudeClientError(
            f"No analysis from {', '.join(models)}: "
            f"{type(last_error).__name__ if last_error else 'budget exhausted'}"
        ) from last_error

    async def _call_with_retry(
        self,
        model: str,
        messages: list[dict],
        system: Optional[str],
        max_tokens: int,
        temperature: float,
        deadline: Optional[float],
    ) -> Any:
        """Retry transient errors with exponential backoff inside the deadline."""
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system

        for attempt in range(self._max_retries):
            try:
                return await self._client.messages.create(**kwargs)
            except (RateLimitError, APIConnectionError) as e:
                wait_time = 2 ** attempt
                out_of_time = deadline is not None and time.monotonic() + wait_time >= deadline
                if attempt + 1 >= self._max_retries or out_of_time:
                    raise
                logger.warning(
                    f"{type(e).__name__} from {model}, retrying in {wait_time}s "
                    f"(attempt {attempt + 1})"
                )
                await asyncio.sleep(wait_time)
            except APIError as e:
                logger.error(f"Claude API error from {model}: status={getattr(e, 'status_code', None)}")
                raise

        raise ClaudeClientError("max_retries must be at least 1")

    async def close(self) -> None:
        await self._client.close()
