"""Provider client adapters that plug into the routing executor."""

from __future__ import annotations

from tutor_ai.providers.litellm_client import (
    LiteLLMProviderClient,
    ProviderCallError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)

__all__ = [
    "LiteLLMProviderClient",
    "ProviderCallError",
    "ProviderRateLimitError",
    "ProviderUnavailableError",
]
