"""Tests for ModelRouter.

Tests cover:
- Rule candidates per task type and complexity
- Hard constraint filtering, widening and infeasible fallback
- Cost / speed priority scoring
- Performance history in scores, reasoning and confidence
- Default-per-tier selection for task types without a rule
"""

from __future__ import annotations

import pytest

from tutor_ai.routing.capabilities import CapabilityRegistry, ProviderCapabilityProfile
from tutor_ai.routing.errors import UnknownProviderError
from tutor_ai.routing.metrics import PerformanceSample, PerformanceTracker
from tutor_ai.routing.router import (
    DEFAULT_TIER_PROVIDERS,
    INFEASIBLE_SELECTION_CONFIDENCE,
    ModelRouter,
    TaskRule,
)
from tutor_ai.routing.types import ComplexityTier, TaskConstraints, TaskType


def _record(tracker: PerformanceTracker, provider: str, task_type: TaskType, n: int, **kwargs):
    for _ in range(n):
        tracker.record(provider, task_type, PerformanceSample(**kwargs))


# ------------------------------------------------------------------ #
# Rule-based selection
# ------------------------------------------------------------------ #


def test_selection_low_picks_most_reliable_preferred(router):
    """Test selection/low chooses gpt-4o-mini (reliability 0.88 vs 0.85)."""
    selection = router.select_provider(TaskType.SELECTION, ComplexityTier.LOW)

    assert selection.provider_id == "gpt-4o-mini"
    assert selection.fallback_providers == ("gpt-4", "claude-3-haiku")
    assert selection.confidence == pytest.approx(0.88)
    assert selection.estimated_cost == pytest.approx(0.000375)
    assert selection.estimated_response_time_ms == 2500


def test_high_complexity_merges_fallback_candidates(router):
    """Test research/high also considers fallback providers and drops the winner from fallbacks."""
    selection = router.select_provider(TaskType.RESEARCH, ComplexityTier.HIGH)

    assert selection.provider_id == "gpt-4o"
    assert set(selection.candidates) == {
        "perplexity-sonar",
        "claude-3-opus",
        "claude-3-sonnet",
        "gpt-4o",
    }
    assert selection.fallback_providers == ("claude-3-sonnet",)


def test_moderate_complexity_uses_preferred_only(router):
    """Test moderate complexity does not merge fallback providers."""
    selection = router.select_provider(TaskType.RESEARCH, ComplexityTier.MODERATE)

    assert selection.provider_id == "claude-3-opus"
    assert set(selection.candidates) == {"perplexity-sonar", "claude-3-opus"}


def test_prioritize_cost_penalizes_expensive_providers(router):
    """Test cost priority flips research/moderate to perplexity-sonar."""
    selection = router.select_provider(
        TaskType.RESEARCH,
        ComplexityTier.MODERATE,
        TaskConstraints(prioritize_cost=True),
    )

    assert selection.provider_id == "perplexity-sonar"


def test_prioritize_speed_penalizes_slow_providers(router):
    """Test speed priority flips selection/low to gpt-3.5-turbo."""
    selection = router.select_provider(
        TaskType.SELECTION,
        ComplexityTier.LOW,
        TaskConstraints(prioritize_speed=True),
    )

    assert selection.provider_id == "gpt-3.5-turbo"


def test_router_default_priority_applies_when_unset(registry, tracker):
    """Test router-level prioritize_cost is used when constraints leave it unset."""
    router = ModelRouter(registry, tracker, prioritize_cost=True)

    selection = router.select_provider(TaskType.RESEARCH, ComplexityTier.MODERATE)

    assert selection.provider_id == "perplexity-sonar"


def test_score_ties_keep_candidate_order(tracker):
    """Test equal scores resolve to the earlier candidate."""
    profiles = [
        ProviderCapabilityProfile("a", 8000, 0.001, 0.001, reliability=0.9),
        ProviderCapabilityProfile("b", 8000, 0.001, 0.001, reliability=0.9),
    ]
    router = ModelRouter(
        CapabilityRegistry(profiles),
        tracker,
        rules=[TaskRule(TaskType.SELECTION, preferred=("b", "a"))],
    )

    selection = router.select_provider(TaskType.SELECTION, ComplexityTier.LOW)

    assert selection.provider_id == "b"


# ------------------------------------------------------------------ #
# Default selection
# ------------------------------------------------------------------ #


@pytest.mark.parametrize("tier", list(ComplexityTier))
def test_task_type_without_rule_uses_tier_default(router, tier):
    """Test unknown rules fall back to the default provider per tier."""
    selection = router.select_provider(TaskType.GENERATION, tier)

    assert selection.provider_id == DEFAULT_TIER_PROVIDERS[tier]
    assert selection.confidence == pytest.approx(0.7)
    assert selection.reasoning == f"Default selection for {tier} complexity task"
    assert selection.provider_id not in selection.fallback_providers


def test_default_selection_fallbacks(router):
    """Test default path hands out gpt-4o-mini and gpt-4 as fallbacks."""
    selection = router.select_provider(TaskType.SYNTHESIS, ComplexityTier.HIGH)

    assert selection.provider_id == "gpt-4o"
    assert selection.fallback_providers == ("gpt-4o-mini", "gpt-4")


# ------------------------------------------------------------------ #
# Constraints
# ------------------------------------------------------------------ #


def test_cost_constraint_filters_candidates(router):
    """Test candidates above max cost per 1k are rejected."""
    selection = router.select_provider(
        TaskType.OPTIMIZATION,
        ComplexityTier.MODERATE,
        TaskConstraints(max_cost_per_1k_tokens=0.0095),
    )

    assert selection.provider_id == "claude-3-sonnet"


def test_unsatisfiable_rule_candidates_widen_to_registry(router, registry):
    """Test the router searches the whole registry when rule candidates all fail."""
    constraints = TaskConstraints(min_context_length=150_000)

    selection = router.select_provider(TaskType.SELECTION, ComplexityTier.LOW, constraints)

    assert selection.provider_id == "claude-3-opus"
    assert registry.get(selection.provider_id).max_context_tokens >= 150_000


@pytest.mark.parametrize(
    ("task_type", "complexity", "constraints"),
    [
        (TaskType.META_ANALYSIS, ComplexityTier.RESEARCH, TaskConstraints(max_response_time_ms=3000)),
        (TaskType.OPTIMIZATION, ComplexityTier.HIGH, TaskConstraints(max_cost_per_1k_tokens=0.001)),
        (TaskType.SELECTION, ComplexityTier.LOW, TaskConstraints(min_reliability=0.95)),
        (TaskType.GENERATION, ComplexityTier.RESEARCH, TaskConstraints(max_cost_per_1k_tokens=0.01)),
        (
            TaskType.RECOMMENDATION,
            ComplexityTier.MODERATE,
            TaskConstraints(min_context_length=100_000, max_response_time_ms=2000),
        ),
    ],
)
def test_selection_satisfies_constraints_when_possible(router, registry, task_type, complexity, constraints):
    """Test the chosen provider honors every hard constraint when one exists."""
    selection = router.select_provider(task_type, complexity, constraints)
    profile = registry.get(selection.provider_id)

    if constraints.max_cost_per_1k_tokens is not None:
        assert profile.average_cost_per_1k <= constraints.max_cost_per_1k_tokens
    if constraints.max_response_time_ms is not None:
        assert profile.mean_latency_ms <= constraints.max_response_time_ms
    if constraints.min_context_length is not None:
        assert profile.max_context_tokens >= constraints.min_context_length
    if constraints.min_reliability is not None:
        assert profile.reliability >= constraints.min_reliability


def test_infeasible_constraints_fall_back_with_reduced_confidence(router):
    """Test nobody satisfying the constraints degrades instead of failing."""
    selection = router.select_provider(
        TaskType.SELECTION,
        ComplexityTier.LOW,
        TaskConstraints(min_context_length=1_000_000),
    )

    assert selection.provider_id == "gpt-4o-mini"
    assert selection.confidence == pytest.approx(INFEASIBLE_SELECTION_CONFIDENCE)
    assert "constraints" in selection.reasoning


def test_estimated_tokens_drive_cost_estimate(router):
    """Test constraints.estimated_tokens is used for estimated_cost."""
    selection = router.select_provider(
        TaskType.SELECTION,
        ComplexityTier.LOW,
        TaskConstraints(estimated_tokens=4000),
    )

    assert selection.estimated_cost == pytest.approx(4 * 0.000375)


# ------------------------------------------------------------------ #
# Performance history
# ------------------------------------------------------------------ #


def test_history_boosts_score_and_confidence(router, tracker):
    """Test a strong track record can outweigh static reliability."""
    _record(
        tracker,
        "gpt-3.5-turbo",
        TaskType.SELECTION,
        12,
        success=True,
        latency_ms=1800,
        cost=0.001,
        user_satisfaction=9.0,
    )

    selection = router.select_provider(TaskType.SELECTION, ComplexityTier.LOW)

    assert selection.provider_id == "gpt-3.5-turbo"
    assert selection.confidence == pytest.approx((0.85 + 1.0) / 2)
    assert "Historical success rate: 100.0%" in selection.reasoning


def test_shallow_history_does_not_change_confidence(router, tracker):
    """Test fewer than 10 samples leave confidence at static reliability."""
    _record(tracker, "gpt-4o", TaskType.SYNERGY_ANALYSIS, 5, success=False, latency_ms=100)

    assert router.provider_confidence("gpt-4o", TaskType.SYNERGY_ANALYSIS) == pytest.approx(0.97)


def test_deep_history_averages_confidence(router, tracker):
    """Test at least 10 samples average reliability with success rate."""
    _record(tracker, "gpt-4o", TaskType.SYNERGY_ANALYSIS, 5, success=True)
    _record(tracker, "gpt-4o", TaskType.SYNERGY_ANALYSIS, 5, success=False)

    assert router.provider_confidence("gpt-4o", TaskType.SYNERGY_ANALYSIS) == pytest.approx(
        (0.97 + 0.5) / 2
    )


# ------------------------------------------------------------------ #
# Accessors
# ------------------------------------------------------------------ #


def test_available_providers(router):
    """Test available providers list preferred then fallback."""
    assert router.available_providers(TaskType.SELECTION) == [
        "gpt-4o-mini",
        "gpt-3.5-turbo",
        "gpt-4",
        "claude-3-haiku",
    ]
    assert router.available_providers(TaskType.GENERATION) == []


def test_estimate_cost(router):
    """Test estimate_cost uses the blended rate and rejects unknown providers."""
    assert router.estimate_cost("gpt-4", 2000) == pytest.approx(0.09)

    with pytest.raises(UnknownProviderError):
        router.estimate_cost("unknown-model")


def test_rule_requires_preferred_provider():
    """Test a rule without preferred providers is rejected."""
    with pytest.raises(ValueError):
        TaskRule(TaskType.SELECTION, preferred=())


# ------------------------------------------------------------------ #
# Value types used by the router
# ------------------------------------------------------------------ #


def test_complexity_tiers_are_ordered():
    """Test tier rank follows low < moderate < high < research."""
    tiers = [ComplexityTier.RESEARCH, ComplexityTier.LOW, ComplexityTier.HIGH, ComplexityTier.MODERATE]

    assert sorted(tiers, key=lambda tier: tier.rank) == [
        ComplexityTier.LOW,
        ComplexityTier.MODERATE,
        ComplexityTier.HIGH,
        ComplexityTier.RESEARCH,
    ]


@pytest.mark.parametrize(
    "constraints, expected",
    [
        (TaskConstraints(), False),
        (TaskConstraints(prioritize_cost=True, prioritize_speed=True, estimated_tokens=500), False),
        (TaskConstraints(max_cost_per_1k_tokens=0.01), True),
        (TaskConstraints(min_reliability=0.9), True),
    ],
)
def test_has_hard_limits_ignores_priorities(constraints, expected):
    """Test only filtering limits count as hard limits."""
    assert constraints.has_hard_limits is expected


def test_priorities_alone_keep_every_rule_candidate(router):
    """Test priority flags without hard limits filter nothing out."""
    selection = router.select_provider(
        TaskType.OPTIMIZATION,
        ComplexityTier.HIGH,
        TaskConstraints(prioritize_speed=True),
    )

    assert set(selection.candidates) == {
        "gpt-4o",
        "gpt-4-turbo",
        "claude-3-sonnet",
        "gpt-4",
        "claude-3-opus",
    }
    assert selection.provider_id == "gpt-4o"
