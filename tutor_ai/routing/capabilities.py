"""Provider capability registry.

Static, in-memory table of what each provider costs, how fast and reliable
it is, how much context it accepts and which complexity tiers it is
optimal for. Loaded once at construction and read-only afterwards; the
router and cost governor only ever read from it.

Default catalog (USD per 1k tokens, input/output):
- gpt-4o-mini: 0.00015 / 0.0006, 128k context, cheapest overall
- gpt-4o: 0.005 / 0.015, 128k context, best general performance
- claude-3-opus: 0.015 / 0.075, 200k context, strongest research/reasoning
- perplexity-sonar: 0.002 / 0.002, 4k context, live web research
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from tutor_ai.routing.errors import UnknownProviderError
from tutor_ai.routing.types import ComplexityTier

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderCapabilityProfile:
    """Capability profile for one provider.

    Attributes:
        provider_id: Provider identifier (LiteLLM model name)
        max_context_tokens: Maximum context window in tokens
        cost_per_1k_input: USD per 1,000 input tokens
        cost_per_1k_output: USD per 1,000 output tokens
        strengths: Qualitative strength tags, used in selection reasoning
        weaknesses: Qualitative weakness tags
        mean_latency_ms: Mean response time in milliseconds
        reliability: Static reliability score (0.0-1.0)
        optimal_for: Complexity tiers this provider is optimal for
    """

    provider_id: str
    max_context_tokens: int
    cost_per_1k_input: float
    cost_per_1k_output: float
    strengths: tuple[str, ...] = ()
    weaknesses: tuple[str, ...] = ()
    mean_latency_ms: float = 0.0
    reliability: float = 1.0
    optimal_for: frozenset[ComplexityTier] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        """Validate profile after initialization."""
        if not self.provider_id:
            raise ValueError("provider_id must not be empty")
        if self.max_context_tokens < 1:
            raise ValueError("max_context_tokens must be positive")
        if self.cost_per_1k_input < 0 or self.cost_per_1k_output < 0:
            raise ValueError("token costs cannot be negative")
        if self.mean_latency_ms < 0:
            raise ValueError("mean_latency_ms cannot be negative")
        if not 0.0 <= self.reliability <= 1.0:
            raise ValueError(f"reliability must be 0.0-1.0, got {self.reliability}")

    @property
    def average_cost_per_1k(self) -> float:
        return (self.cost_per_1k_input + self.cost_per_1k_output) / 2

    def estimate_cost(self, estimated_tokens: int) -> float:
        """Estimate USD cost for a token count at the blended rate."""
        return (max(estimated_tokens, 0) / 1000.0) * self.average_cost_per_1k


def _tiers(*names: str) -> frozenset[ComplexityTier]:
    return frozenset(ComplexityTier(name) for name in names)


DEFAULT_PROFILES: tuple[ProviderCapabilityProfile, ...] = (
    ProviderCapabilityProfile(
        provider_id="gpt-3.5-turbo",
        max_context_tokens=4096,
        cost_per_1k_input=0.0015,
        cost_per_1k_output=0.002,
        strengths=("Fast response", "Cost effective", "Good for simple tasks"),
        weaknesses=("Limited reasoning", "Shorter context"),
        mean_latency_ms=2000,
        reliability=0.85,
        optimal_for=_tiers("low"),
    ),
    ProviderCapabilityProfile(
        provider_id="gpt-4",
        max_context_tokens=8192,
        cost_per_1k_input=0.03,
        cost_per_1k_output=0.06,
        strengths=("Strong reasoning", "Good context handling", "Reliable"),
        weaknesses=("Higher cost", "Slower response"),
        mean_latency_ms=8000,
        reliability=0.95,
        optimal_for=_tiers("moderate", "high"),
    ),
    ProviderCapabilityProfile(
        provider_id="gpt-4-turbo",
        max_context_tokens=128_000,
        cost_per_1k_input=0.01,
        cost_per_1k_output=0.03,
        strengths=("Large context", "Fast for GPT-4", "Strong reasoning"),
        weaknesses=("Higher cost than 3.5",),
        mean_latency_ms=5000,
        reliability=0.93,
        optimal_for=_tiers("moderate", "high"),
    ),
    ProviderCapabilityProfile(
        provider_id="gpt-4o",
        max_context_tokens=128_000,
        cost_per_1k_input=0.005,
        cost_per_1k_output=0.015,
        strengths=("Best performance", "Large context", "Multimodal"),
        weaknesses=("Premium pricing",),
        mean_latency_ms=4000,
        reliability=0.97,
        optimal_for=_tiers("high", "research"),
    ),
    ProviderCapabilityProfile(
        provider_id="gpt-4o-mini",
        max_context_tokens=128_000,
        cost_per_1k_input=0.00015,
        cost_per_1k_output=0.0006,
        strengths=("Very cost effective", "Fast", "Large context"),
        weaknesses=("Reduced capabilities vs full GPT-4",),
        mean_latency_ms=2500,
        reliability=0.88,
        optimal_for=_tiers("low", "moderate"),
    ),
    ProviderCapabilityProfile(
        provider_id="claude-3-haiku",
        max_context_tokens=200_000,
        cost_per_1k_input=0.00025,
        cost_per_1k_output=0.00125,
        strengths=("Very fast", "Large context", "Cost effective"),
        weaknesses=("Limited reasoning vs larger models",),
        mean_latency_ms=1500,
        reliability=0.87,
        optimal_for=_tiers("low", "moderate"),
    ),
    ProviderCapabilityProfile(
        provider_id="claude-3-sonnet",
        max_context_tokens=200_000,
        cost_per_1k_input=0.003,
        cost_per_1k_output=0.015,
        strengths=("Strong reasoning", "Large context", "Good analysis"),
        weaknesses=("Higher cost",),
        mean_latency_ms=6000,
        reliability=0.94,
        optimal_for=_tiers("moderate", "high"),
    ),
    ProviderCapabilityProfile(
        provider_id="claude-3-opus",
        max_context_tokens=200_000,
        cost_per_1k_input=0.015,
        cost_per_1k_output=0.075,
        strengths=("Best reasoning", "Complex analysis", "Research tasks"),
        weaknesses=("Highest cost", "Slower response"),
        mean_latency_ms=10_000,
        reliability=0.96,
        optimal_for=_tiers("high", "research"),
    ),
    ProviderCapabilityProfile(
        provider_id="perplexity-sonar",
        max_context_tokens=4096,
        cost_per_1k_input=0.002,
        cost_per_1k_output=0.002,
        strengths=("Web search", "Real-time data", "Research"),
        weaknesses=("Limited reasoning", "Specialized use"),
        mean_latency_ms=7000,
        reliability=0.89,
        optimal_for=_tiers("research"),
    ),
)


class CapabilityRegistry:
    """Read-only lookup table of provider capability profiles.

    One instance is owned by RoutingService and shared by reference with
    the router and cost governor.
    """

    def __init__(self, profiles: Iterable[ProviderCapabilityProfile] | None = None) -> None:
        """Initialize registry.

        Args:
            profiles: Provider profiles. If None, uses DEFAULT_PROFILES.

        Raises:
            ValueError: If the table is empty or a provider appears twice
        """
        if profiles is None:
            profiles = DEFAULT_PROFILES

        table: dict[str, ProviderCapabilityProfile] = {}
        for profile in profiles:
            if profile.provider_id in table:
                raise ValueError(f"Duplicate provider profile: {profile.provider_id}")
            table[profile.provider_id] = profile

        if not table:
            raise ValueError("CapabilityRegistry requires at least one provider profile")

        self._profiles = table

        log.info(
            "capability_registry.initialized",
            provider_count=len(table),
            providers=list(table),
        )

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def get(self, provider_id: str) -> ProviderCapabilityProfile:
        """Return the profile for a provider.

        Raises:
            UnknownProviderError: If the provider is not registered
        """
        try:
            return self._profiles[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    def find(self, provider_id: str) -> ProviderCapabilityProfile | None:
        return self._profiles.get(provider_id)

    def providers(self) -> list[str]:
        return list(self._profiles)

    def profiles(self) -> list[ProviderCapabilityProfile]:
        return list(self._profiles.values())

    def optimal_for(self, tier: ComplexityTier) -> list[ProviderCapabilityProfile]:
        """Profiles that list the given tier as optimal, in registry order."""
        return [p for p in self._profiles.values() if tier in p.optimal_for]

    def by_cost(self, candidates: Iterable[str] | None = None) -> list[ProviderCapabilityProfile]:
        """Profiles among candidates, lowest blended cost first.

        Unknown candidate IDs are ignored. Ties keep registry order.

        Args:
            candidates: Provider IDs to consider (None = every provider)
        """
        if candidates is None:
            pool = list(self._profiles.values())
        else:
            pool = [self._profiles[c] for c in candidates if c in self._profiles]
        return sorted(pool, key=lambda profile: profile.average_cost_per_1k)

    def cheapest(self, candidates: Iterable[str] | None = None) -> ProviderCapabilityProfile:
        """Return the lowest blended-cost profile among candidates.

        Raises:
            ValueError: If no known provider is left to choose from
        """
        ranked = self.by_cost(candidates)
        if not ranked:
            raise ValueError("No known providers to choose the cheapest from")
        return ranked[0]
