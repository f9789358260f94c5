"""LiteLLM adapter that turns chat messages into an executor task_fn.

LiteLLM provides one interface for every provider in the capability
registry. Calls go through a LiteLLM proxy so that:
1. API keys stay out of the application code
2. Provider IDs in the registry map directly to proxy model names

This module:
- Wraps litellm.acompletion() behind the executor's task_fn contract
- Normalizes errors to provider call exceptions
- Prices each call with litellm.completion_cost(), falling back to
  registry rates for models LiteLLM has no price for

Retries are not done here; the FallbackExecutor owns retry rounds.
"""

from __future__ import annotations

from typing import Any

import litellm
import structlog

from tutor_ai.config import Settings, get_settings
from tutor_ai.routing.capabilities import CapabilityRegistry
from tutor_ai.routing.errors import RoutingError
from tutor_ai.routing.types import ProviderResponse, TaskFn, TokenUsage

log = structlog.get_logger(__name__)


class ProviderCallError(RoutingError):
    """Base exception for a failed provider call."""


class ProviderRateLimitError(ProviderCallError):
    """Upstream provider rate limit exceeded."""


class ProviderUnavailableError(ProviderCallError):
    """Upstream provider is unavailable."""


class LiteLLMProviderClient:
    """Thin wrapper around LiteLLM producing ProviderResponse objects."""

    def __init__(
        self,
        settings: Settings | None = None,
        registry: CapabilityRegistry | None = None,
        *,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> None:
        self._settings = settings or get_settings()
        self._registry = registry or CapabilityRegistry()
        self._temperature = temperature
        self._max_tokens = max_tokens
        # Route every call through the proxy
        litellm.api_base = self._settings.litellm_base_url
        litellm.api_key = self._settings.litellm_api_key.get_secret_value()

    def task_fn(self, messages: list[dict[str, str]], **kwargs: Any) -> TaskFn:
        """Bind messages into a task_fn for FallbackExecutor / RoutingService.

        Args:
            messages: Chat messages in OpenAI format
            **kwargs: Additional kwargs passed to litellm.acompletion()

        Returns:
            Async callable taking a provider ID
        """

        async def call(provider_id: str) -> ProviderResponse:
            return await self.complete(provider_id, messages, **kwargs)

        return call

    async def complete(
        self,
        provider_id: str,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> ProviderResponse:
        """Send a chat completion to one provider.

        Args:
            provider_id: Registry provider ID (LiteLLM model name)
            messages: List of role/content dicts (OpenAI format)
            temperature: Sampling temperature (client default if None)
            max_tokens: Maximum output tokens (client default if None)
            **kwargs: Additional kwargs passed to litellm.acompletion()

        Returns:
            ProviderResponse with content, token usage and cost

        Raises:
            ProviderRateLimitError: Upstream rate limit
            ProviderUnavailableError: Upstream unavailable
            ProviderCallError: Any other completion failure
        """
        log.debug(
            "litellm_client.completion_request",
            provider=provider_id,
            message_count=len(messages),
        )

        try:
            response: litellm.ModelResponse = await litellm.acompletion(
                model=provider_id,
                messages=messages,
                temperature=self._temperature if temperature is None else temperature,
                max_tokens=max_tokens or self._max_tokens,
                **kwargs,
            )
        except litellm.exceptions.RateLimitError as exc:
            raise ProviderRateLimitError(f"Rate limit from {provider_id}: {exc}") from exc
        except litellm.exceptions.ServiceUnavailableError as exc:
            raise ProviderUnavailableError(f"{provider_id} unavailable: {exc}") from exc
        except Exception as exc:
            raise ProviderCallError(f"{provider_id} completion failed: {exc}") from exc

        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
            )

        cost = self._price(provider_id, response, usage)

        log.info(
            "litellm_client.completion_done",
            provider=provider_id,
            prompt_tokens=usage.input_tokens,
            completion_tokens=usage.output_tokens,
            cost=cost,
        )

        return ProviderResponse(
            content=self.extract_text(response),
            token_usage=usage,
            cost=cost,
        )

    def extract_text(self, response: litellm.ModelResponse) -> str:
        """Extract the assistant text content from a completion response."""
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""

    def _price(self, provider_id: str, response: litellm.ModelResponse, usage: TokenUsage) -> float:
        try:
            return float(litellm.completion_cost(completion_response=response))
        except Exception as exc:
            # LiteLLM raises for models missing from its price map
            profile = self._registry.find(provider_id)
            if profile is None:
                log.warning(
                    "litellm_client.cost_unknown",
                    provider=provider_id,
                    error_message=str(exc),
                )
                return 0.0
            return (
                usage.input_tokens / 1000 * profile.cost_per_1k_input
                + usage.output_tokens / 1000 * profile.cost_per_1k_output
            )
