"""Model router - provider selection per task type and complexity.

The router picks a provider for a classified request based on:
- Static task rules (preferred + fallback providers per task type)
- Caller hard constraints (cost, latency, context, reliability)
- Historical performance from the PerformanceTracker
- Cost / speed priority flags

Default provider per complexity tier (used when no rule exists):
- LOW: gpt-4o-mini
- MODERATE: gpt-4-turbo
- HIGH: gpt-4o
- RESEARCH: claude-3-opus
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from tutor_ai.routing.types import ComplexityTier, ModelSelection, TaskConstraints, TaskType

if TYPE_CHECKING:
    from tutor_ai.routing.capabilities import CapabilityRegistry, ProviderCapabilityProfile
    from tutor_ai.routing.metrics import PerformanceTracker

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TaskRule:
    """Static routing rule for one task type.

    Attributes:
        task_type: Task type the rule applies to
        preferred: Providers considered for every complexity
        fallback: Extra candidates for high/research complexity, and the
            fallback chain handed to the executor
    """

    task_type: TaskType
    preferred: tuple[str, ...]
    fallback: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate rule after initialization."""
        if not self.preferred:
            raise ValueError(f"Rule for {self.task_type} needs at least one preferred provider")


DEFAULT_TASK_RULES: tuple[TaskRule, ...] = (
    TaskRule(
        TaskType.SELECTION,
        preferred=("gpt-4o-mini", "gpt-3.5-turbo"),
        fallback=("gpt-4", "claude-3-haiku"),
    ),
    TaskRule(
        TaskType.RECOMMENDATION,
        preferred=("gpt-4o-mini", "gpt-4-turbo"),
        fallback=("gpt-4", "claude-3-sonnet"),
    ),
    TaskRule(
        TaskType.OPTIMIZATION,
        preferred=("gpt-4o", "gpt-4-turbo", "claude-3-sonnet"),
        fallback=("gpt-4", "claude-3-opus"),
    ),
    TaskRule(
        TaskType.RESEARCH,
        preferred=("perplexity-sonar", "claude-3-opus"),
        fallback=("claude-3-sonnet", "gpt-4o"),
    ),
    TaskRule(
        TaskType.SYNERGY_ANALYSIS,
        preferred=("gpt-4o", "claude-3-sonnet"),
        fallback=("gpt-4-turbo", "claude-3-opus"),
    ),
    TaskRule(
        TaskType.META_ANALYSIS,
        preferred=("claude-3-opus", "perplexity-sonar"),
        fallback=("claude-3-sonnet", "gpt-4o"),
    ),
)

DEFAULT_TIER_PROVIDERS: dict[ComplexityTier, str] = {
    ComplexityTier.LOW: "gpt-4o-mini",
    ComplexityTier.MODERATE: "gpt-4-turbo",
    ComplexityTier.HIGH: "gpt-4o",
    ComplexityTier.RESEARCH: "claude-3-opus",
}

DEFAULT_FALLBACK_PROVIDERS: tuple[str, ...] = ("gpt-4o-mini", "gpt-4")

# Token count used for cost estimates when the caller gives none
DEFAULT_ESTIMATED_TOKENS = 1000

DEFAULT_SELECTION_CONFIDENCE = 0.7
INFEASIBLE_SELECTION_CONFIDENCE = 0.4


class ModelRouter:
    """Rule-driven provider selection with history-aware scoring.

    The router never fails: unknown task types get the default provider
    for their tier, and constraints nobody can satisfy degrade to the same
    default with reduced confidence.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        tracker: PerformanceTracker,
        rules: Iterable[TaskRule] | None = None,
        *,
        tier_providers: Mapping[ComplexityTier, str] | None = None,
        min_history_samples: int = 10,
        prioritize_cost: bool = False,
        prioritize_speed: bool = False,
    ) -> None:
        """Initialize model router.

        Args:
            registry: Provider capability registry
            tracker: Performance history store
            rules: Task rules. If None, uses DEFAULT_TASK_RULES.
            tier_providers: Default provider per tier. If None, uses DEFAULT_TIER_PROVIDERS.
            min_history_samples: Samples needed before history affects confidence
            prioritize_cost: Default cost priority when constraints leave it unset
            prioritize_speed: Default speed priority when constraints leave it unset
        """
        self._registry = registry
        self._tracker = tracker
        self._rules: dict[str, TaskRule] = {
            rule.task_type: rule for rule in (rules or DEFAULT_TASK_RULES)
        }
        self._tier_providers = dict(tier_providers or DEFAULT_TIER_PROVIDERS)
        self._min_history_samples = min_history_samples
        self._prioritize_cost = prioritize_cost
        self._prioritize_speed = prioritize_speed

        log.info(
            "model_router.initialized",
            task_rules=[str(task_type) for task_type in self._rules],
            tier_providers={str(tier): p for tier, p in self._tier_providers.items()},
        )

    def select_provider(
        self,
        task_type: TaskType | str,
        complexity: ComplexityTier,
        constraints: TaskConstraints | None = None,
    ) -> ModelSelection:
        """Select the best provider for a task.

        Selection steps:
        1. Rule candidates (preferred, plus fallback for high/research)
        2. Drop candidates that violate hard constraints
        3. Widen to every registered provider if nothing is left
        4. Score survivors and pick the highest (ties keep candidate order)

        Args:
            task_type: Classified task type
            complexity: Classified complexity tier
            constraints: Optional caller limits and priorities

        Returns:
            ModelSelection for the executor
        """
        constraints = constraints or TaskConstraints()
        estimated_tokens = constraints.estimated_tokens or DEFAULT_ESTIMATED_TOKENS
        rule = self._rules.get(task_type)

        if rule is None:
            log.warning("model_router.no_rule", task_type=str(task_type))
            candidates = [self._tier_providers[complexity]]
        else:
            candidates = self._candidates(rule, complexity)

        eligible = self._apply_constraints(candidates, constraints)
        widened = False
        if not eligible:
            eligible = self._apply_constraints(self._registry.providers(), constraints)
            widened = True
            log.info(
                "model_router.candidates_widened",
                task_type=str(task_type),
                rule_candidates=candidates,
                eligible=[p.provider_id for p in eligible],
            )

        if not eligible:
            return self._infeasible_selection(task_type, complexity, estimated_tokens)

        if rule is None and not widened:
            return self._default_selection(complexity, estimated_tokens)

        ranked = self._rank(eligible, task_type, constraints)
        winner = ranked[0]

        fallback_pool = rule.fallback if rule is not None else DEFAULT_FALLBACK_PROVIDERS
        fallbacks = tuple(p for p in fallback_pool if p != winner.provider_id)

        selection = ModelSelection(
            provider_id=winner.provider_id,
            reasoning=self._reasoning(winner, task_type, complexity),
            estimated_cost=winner.estimate_cost(estimated_tokens),
            estimated_response_time_ms=winner.mean_latency_ms,
            fallback_providers=fallbacks,
            confidence=self.provider_confidence(winner.provider_id, task_type),
            candidates=tuple(p.provider_id for p in ranked),
        )

        log.info(
            "model_router.provider_selected",
            task_type=str(task_type),
            complexity=str(complexity),
            provider=selection.provider_id,
            confidence=round(selection.confidence, 3),
            estimated_cost=selection.estimated_cost,
            fallbacks=list(fallbacks),
            widened=widened,
        )
        return selection

    def rule_for(self, task_type: TaskType | str) -> TaskRule | None:
        return self._rules.get(task_type)

    def available_providers(self, task_type: TaskType | str) -> list[str]:
        """Preferred followed by fallback providers for a task type (empty without a rule)."""
        rule = self.rule_for(task_type)
        if rule is None:
            return []
        return list(rule.preferred) + list(rule.fallback)

    def estimate_cost(self, provider_id: str, estimated_tokens: int = DEFAULT_ESTIMATED_TOKENS) -> float:
        """Estimate USD cost of a provider call.

        Raises:
            UnknownProviderError: If the provider is not registered
        """
        return self._registry.get(provider_id).estimate_cost(estimated_tokens)

    def provider_confidence(self, provider_id: str, task_type: TaskType | str) -> float:
        """Static reliability, averaged with empirical success rate once history is deep enough."""
        profile = self._registry.find(provider_id)
        confidence = profile.reliability if profile else DEFAULT_SELECTION_CONFIDENCE

        record = self._tracker.query(provider_id, str(task_type))
        if record is not None and record.total_requests >= self._min_history_samples:
            confidence = (confidence + record.success_rate) / 2
        return confidence

    def _candidates(self, rule: TaskRule, complexity: ComplexityTier) -> list[str]:
        candidates = list(rule.preferred)
        if complexity.rank >= ComplexityTier.HIGH.rank:
            candidates.extend(rule.fallback)
        # Order-preserving de-duplication
        return list(dict.fromkeys(candidates))

    def _apply_constraints(
        self,
        provider_ids: Iterable[str],
        constraints: TaskConstraints,
    ) -> list[ProviderCapabilityProfile]:
        eligible = []
        for provider_id in provider_ids:
            profile = self._registry.find(provider_id)
            if profile is None:
                continue
            if not constraints.has_hard_limits:
                eligible.append(profile)
                continue
            if (
                constraints.max_cost_per_1k_tokens is not None
                and profile.average_cost_per_1k > constraints.max_cost_per_1k_tokens
            ):
                continue
            if (
                constraints.max_response_time_ms is not None
                and profile.mean_latency_ms > constraints.max_response_time_ms
            ):
                continue
            if (
                constraints.min_context_length is not None
                and profile.max_context_tokens < constraints.min_context_length
            ):
                continue
            if (
                constraints.min_reliability is not None
                and profile.reliability < constraints.min_reliability
            ):
                continue
            eligible.append(profile)
        return eligible

    def _rank(
        self,
        profiles: list[ProviderCapabilityProfile],
        task_type: TaskType | str,
        constraints: TaskConstraints,
    ) -> list[ProviderCapabilityProfile]:
        prioritize_cost = (
            self._prioritize_cost if constraints.prioritize_cost is None else constraints.prioritize_cost
        )
        prioritize_speed = (
            self._prioritize_speed
            if constraints.prioritize_speed is None
            else constraints.prioritize_speed
        )

        def score(profile: ProviderCapabilityProfile) -> float:
            value = profile.reliability * 100
            record = self._tracker.query(profile.provider_id, str(task_type))
            if record is not None and record.total_requests > 0:
                value += record.success_rate * 50
                value += record.user_satisfaction * 10
            if prioritize_cost:
                value -= profile.average_cost_per_1k * 1000
            if prioritize_speed:
                value -= profile.mean_latency_ms / 100
            return value

        # sorted() is stable, so equal scores keep candidate order
        return sorted(profiles, key=score, reverse=True)

    def _reasoning(
        self,
        profile: ProviderCapabilityProfile,
        task_type: TaskType | str,
        complexity: ComplexityTier,
    ) -> str:
        reasoning = (
            f"Selected {profile.provider_id} for {task_type} ({complexity} complexity) because: "
            + ", ".join(profile.strengths)
        )
        record = self._tracker.query(profile.provider_id, str(task_type))
        if record is not None and record.total_requests > 0:
            reasoning += f". Historical success rate: {record.success_rate * 100:.1f}%"
        return reasoning

    def _default_selection(
        self,
        complexity: ComplexityTier,
        estimated_tokens: int,
        *,
        confidence: float = DEFAULT_SELECTION_CONFIDENCE,
        reasoning: str | None = None,
    ) -> ModelSelection:
        provider_id = self._tier_providers[complexity]
        profile = self._registry.find(provider_id)
        return ModelSelection(
            provider_id=provider_id,
            reasoning=reasoning or f"Default selection for {complexity} complexity task",
            estimated_cost=profile.estimate_cost(estimated_tokens) if profile else 0.0,
            estimated_response_time_ms=profile.mean_latency_ms if profile else 0.0,
            fallback_providers=tuple(p for p in DEFAULT_FALLBACK_PROVIDERS if p != provider_id),
            confidence=confidence,
            candidates=(provider_id,),
        )

    def _infeasible_selection(
        self,
        task_type: TaskType | str,
        complexity: ComplexityTier,
        estimated_tokens: int,
    ) -> ModelSelection:
        log.warning(
            "model_router.constraints_infeasible",
            task_type=str(task_type),
            complexity=str(complexity),
            provider=self._tier_providers[complexity],
        )
        return self._default_selection(
            complexity,
            estimated_tokens,
            confidence=INFEASIBLE_SELECTION_CONFIDENCE,
            reasoning=(
                f"No provider satisfies the constraints; default selection for "
                f"{complexity} complexity task"
            ),
        )
