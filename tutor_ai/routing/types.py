"""Shared value types for classification, routing and execution.

Everything here is a plain dataclass or enum so that the classifier,
router, cost governor and executor can exchange results without importing
each other.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class TaskType(StrEnum):
    """Enumerated request categories used to pick routing rules."""

    SELECTION = "selection"
    RECOMMENDATION = "recommendation"
    OPTIMIZATION = "optimization"
    SYNERGY_ANALYSIS = "synergy-analysis"
    META_ANALYSIS = "meta-analysis"
    RESEARCH = "research"
    SYNTHESIS = "synthesis"
    STRATEGY_ANALYSIS = "strategy-analysis"
    GENERATION = "generation"
    PERFORMANCE_ANALYSIS = "performance-analysis"


class ComplexityTier(StrEnum):
    """Ordinal complexity classification: low < moderate < high < research."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    RESEARCH = "research"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {
    ComplexityTier.LOW: 0,
    ComplexityTier.MODERATE: 1,
    ComplexityTier.HIGH: 2,
    ComplexityTier.RESEARCH: 3,
}


class OutputShape(StrEnum):
    JSON = "json"
    TEXT = "text"
    STRUCTURED = "structured"


@dataclass(frozen=True)
class TaskConstraints:
    """Optional caller limits on provider selection.

    Attributes:
        max_cost_per_1k_tokens: Reject providers whose average $/1k tokens is higher
        max_response_time_ms: Reject providers whose mean latency is higher
        min_context_length: Reject providers with a smaller context window
        min_reliability: Reject providers with a lower static reliability
        prioritize_cost: Penalize expensive providers (None = configured default)
        prioritize_speed: Penalize slow providers (None = configured default)
        estimated_tokens: Caller's own token estimate, overrides the classifier's
    """

    max_cost_per_1k_tokens: float | None = None
    max_response_time_ms: float | None = None
    min_context_length: int | None = None
    min_reliability: float | None = None
    prioritize_cost: bool | None = None
    prioritize_speed: bool | None = None
    estimated_tokens: int | None = None

    @property
    def has_hard_limits(self) -> bool:
        return any(
            value is not None
            for value in (
                self.max_cost_per_1k_tokens,
                self.max_response_time_ms,
                self.min_context_length,
                self.min_reliability,
            )
        )


@dataclass(frozen=True)
class TaskRequest:
    """A rendered generation request handed to the routing core.

    The context mapping is frozen into a read-only proxy on construction.
    """

    prompt: str
    context: Mapping[str, Any] = field(default_factory=dict)
    constraints: TaskConstraints | None = None
    task_type_hint: TaskType | None = None
    expected_output: OutputShape = OutputShape.TEXT

    def __post_init__(self) -> None:
        if not isinstance(self.context, MappingProxyType):
            object.__setattr__(self, "context", MappingProxyType(dict(self.context)))


@dataclass(frozen=True)
class TaskClassification:
    """Result of classifying a TaskRequest.

    Attributes:
        task_type: Winning task type
        complexity: Complexity tier
        confidence: Classification confidence (0.0-1.0)
        reasoning: Human-readable explanation
        estimated_tokens: Estimated token footprint of the request
        requires_research: Whether research capability is needed
        factors: Raw feature scores for observability
    """

    task_type: TaskType
    complexity: ComplexityTier
    confidence: float
    reasoning: str
    estimated_tokens: int
    requires_research: bool
    factors: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be 0.0-1.0, got {self.confidence}")


@dataclass(frozen=True)
class ModelSelection:
    """Router (and cost governance) output consumed by the executor."""

    provider_id: str
    reasoning: str
    estimated_cost: float
    estimated_response_time_ms: float
    fallback_providers: tuple[str, ...]
    confidence: float
    candidates: tuple[str, ...] = ()
    savings_opportunity: float | None = None
    budget_constrained: bool = False


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ProviderResponse:
    """What an injected provider call returns on success."""

    content: str
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    cost: float = 0.0


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of executing a request across the fallback chain.

    Attributes:
        provider_used: Provider that produced the content (last tried on failure)
        attempts_count: Round (1-based) in which the call finished
        fallbacks_used: Providers that failed before provider_used, in order
        success: Whether any provider succeeded
        content: Provider content on success
        error: Last error message on failure
        token_usage: Tokens consumed by the successful call
        actual_cost: Cost of the successful call
        latency_ms: Latency of the successful call
    """

    provider_used: str | None
    attempts_count: int
    fallbacks_used: tuple[str, ...]
    success: bool
    content: str | None = None
    error: str | None = None
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    actual_cost: float = 0.0
    latency_ms: float = 0.0


# Injected provider client: provider_id -> ProviderResponse, raises on failure.
TaskFn = Callable[[str], Awaitable[ProviderResponse]]
