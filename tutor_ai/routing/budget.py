"""Daily cost governance for provider selection.

The CostGovernor refines the router's choice against a daily USD cap:
- Daily spend ledger with per-task-type breakdown
- Cheapest-provider override once the cap is reached
- Re-ranking of router candidates by cost, speed or a balanced score
- Alerting at threshold levels (80%, 90% of the cap)
- Cost analytics over a trailing window

Budget exhaustion never fails a request; it only downgrades the provider.
Ledgers are in-memory and keyed by UTC date, one lock per date.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from tutor_ai.routing.types import ComplexityTier, ModelSelection, TaskConstraints, TaskType
from tutor_ai.telemetry.prometheus import record_budget_alert, record_daily_cost

if TYPE_CHECKING:
    from tutor_ai.routing.capabilities import CapabilityRegistry, ProviderCapabilityProfile
    from tutor_ai.routing.circuit_breaker import CircuitBreakerRegistry
    from tutor_ai.routing.router import ModelRouter

log = structlog.get_logger(__name__)


class AlertLevel(StrEnum):
    WARNING = "warning"
    CRITICAL = "critical"


class CostTrend(StrEnum):
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


@dataclass(frozen=True)
class BudgetAlert:
    """Observational record of a crossed budget threshold."""

    level: AlertLevel
    message: str
    day: date
    total_cost: float
    daily_cap: float
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class DailyCostLedger:
    """Spend for one UTC day.

    Attributes:
        day: Ledger date (UTC)
        total_cost: USD spent so far
        request_count: Executions recorded
        task_breakdown: USD spent per task type
    """

    day: date
    total_cost: float = 0.0
    request_count: int = 0
    task_breakdown: dict[str, float] = field(default_factory=dict)


@dataclass
class _Day:
    ledger: DailyCostLedger
    lock: threading.Lock = field(default_factory=threading.Lock)
    alerted: set[AlertLevel] = field(default_factory=set)


@dataclass(frozen=True)
class _Option:
    profile: ProviderCapabilityProfile
    cost: float
    confidence: float

    @property
    def balanced_score(self) -> float:
        return self.confidence * 100 - self.cost * 10 - self.profile.mean_latency_ms / 100


class CostGovernor:
    """Applies the daily cost cap and cost priorities to router output.

    Reads the capability registry and breaker state; owns the daily ledgers
    and the alert log.
    """

    # Savings below this are not worth mentioning in reasoning
    SAVINGS_REPORT_MIN_USD = 0.01

    def __init__(
        self,
        registry: CapabilityRegistry,
        router: ModelRouter,
        breakers: CircuitBreakerRegistry,
        *,
        daily_cap_usd: float = 10.0,
        warning_threshold: float = 0.80,
        critical_threshold: float = 0.90,
        prioritize_cost: bool = False,
        prioritize_speed: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize cost governor.

        Args:
            registry: Provider capability registry
            router: Router whose candidates are re-ranked
            breakers: Circuit breaker state (open providers are never forced)
            daily_cap_usd: Default daily spend cap in USD
            warning_threshold: Fraction of cap that raises a warning alert
            critical_threshold: Fraction of cap that raises a critical alert
            prioritize_cost: Default cost priority when constraints leave it unset
            prioritize_speed: Default speed priority when constraints leave it unset
            clock: Time source returning aware datetimes (injectable for tests)
        """
        if daily_cap_usd <= 0:
            raise ValueError("daily_cap_usd must be positive")
        if not 0.0 < warning_threshold < critical_threshold <= 1.0:
            raise ValueError("thresholds must satisfy 0 < warning < critical <= 1")

        self._registry = registry
        self._router = router
        self._breakers = breakers
        self._daily_cap = daily_cap_usd
        self._warning_threshold = warning_threshold
        self._critical_threshold = critical_threshold
        self._prioritize_cost = prioritize_cost
        self._prioritize_speed = prioritize_speed
        self._clock = clock or (lambda: datetime.now(UTC))

        self._days: dict[date, _Day] = {}
        self._alerts: list[BudgetAlert] = []
        self._alerts_lock = threading.Lock()

        log.info(
            "cost_governor.initialized",
            daily_cap_usd=daily_cap_usd,
            warning_threshold=warning_threshold,
            critical_threshold=critical_threshold,
        )

    @property
    def daily_cap(self) -> float:
        return self._daily_cap

    def today(self) -> date:
        return self._clock().astimezone(UTC).date()

    def optimize(
        self,
        task_type: TaskType | str,
        complexity: ComplexityTier,
        estimated_tokens: int,
        daily_budget: float | None = None,
        constraints: TaskConstraints | None = None,
    ) -> ModelSelection:
        """Refine provider selection against today's spend.

        Selection logic:
        1. Spend >= cap: cheapest eligible provider
        2. Cost-priority caller and spend >= critical threshold: same override
        3. Otherwise re-rank router candidates by the caller's priority

        Args:
            task_type: Classified task type
            complexity: Classified complexity tier
            estimated_tokens: Estimated token footprint of the request
            daily_budget: Cap override for this call (None = configured cap)
            constraints: Caller limits and priorities

        Returns:
            ModelSelection with savings_opportunity filled in
        """
        cap = daily_budget if daily_budget is not None else self._daily_cap
        constraints = replace(constraints or TaskConstraints(), estimated_tokens=estimated_tokens)
        prioritize_cost = (
            self._prioritize_cost if constraints.prioritize_cost is None else constraints.prioritize_cost
        )
        prioritize_speed = (
            self._prioritize_speed
            if constraints.prioritize_speed is None
            else constraints.prioritize_speed
        )

        spent = self.spent_on(self.today())

        if spent >= cap:
            return self._cheapest_selection(
                task_type,
                estimated_tokens,
                spent=spent,
                cap=cap,
                reason="Daily budget exceeded, using most cost-effective provider",
            )

        if prioritize_cost and spent >= cap * self._critical_threshold:
            return self._cheapest_selection(
                task_type,
                estimated_tokens,
                spent=spent,
                cap=cap,
                reason="Daily budget nearly exhausted, using most cost-effective provider",
            )

        selection = self._router.select_provider(task_type, complexity, constraints)

        options = []
        for provider_id in selection.candidates or (selection.provider_id,):
            profile = self._registry.find(provider_id)
            if profile is None:
                continue
            options.append(
                _Option(
                    profile=profile,
                    cost=profile.estimate_cost(estimated_tokens),
                    confidence=self._router.provider_confidence(provider_id, task_type),
                )
            )

        if not options:
            return selection

        if prioritize_cost:
            options.sort(key=lambda o: o.cost)
        elif prioritize_speed:
            options.sort(key=lambda o: o.profile.mean_latency_ms)
        else:
            options.sort(key=lambda o: o.balanced_score, reverse=True)

        chosen = options[0]
        savings = max(o.cost for o in options) - chosen.cost

        ranked_ids = tuple(o.profile.provider_id for o in options)
        fallbacks = tuple(
            p
            for p in dict.fromkeys(ranked_ids[1:] + selection.fallback_providers)
            if p != chosen.profile.provider_id
        )

        if chosen.profile.provider_id == selection.provider_id:
            reasoning = selection.reasoning
        else:
            reasoning = (
                f"Selected {chosen.profile.provider_id} for optimal cost-performance balance"
            )
        if savings > self.SAVINGS_REPORT_MIN_USD:
            reasoning += f". Saves ${savings:.3f} compared to premium options"
        if prioritize_cost:
            reasoning += ". Prioritizing cost efficiency"
        elif prioritize_speed:
            reasoning += ". Prioritizing response speed"

        optimized = replace(
            selection,
            provider_id=chosen.profile.provider_id,
            reasoning=reasoning,
            estimated_cost=chosen.cost,
            estimated_response_time_ms=chosen.profile.mean_latency_ms,
            fallback_providers=fallbacks,
            confidence=chosen.confidence,
            candidates=ranked_ids,
            savings_opportunity=savings,
        )

        log.info(
            "cost_governor.optimized",
            task_type=str(task_type),
            router_choice=selection.provider_id,
            provider=optimized.provider_id,
            estimated_cost=optimized.estimated_cost,
            savings_opportunity=savings,
            spent_today=spent,
            daily_cap=cap,
        )
        return optimized

    def record_spend(
        self,
        task_type: TaskType | str,
        cost: float,
        *,
        day: date | None = None,
    ) -> DailyCostLedger:
        """Append an execution's final cost to the day's ledger.

        Crossing a threshold appends one BudgetAlert per level per day.
        Never blocks or raises on budget state.

        Args:
            task_type: Task type the cost is attributed to
            cost: USD cost of the execution
            day: Ledger date (None = today, UTC)

        Returns:
            Copy of the updated ledger
        """
        if cost < 0:
            raise ValueError(f"cost cannot be negative, got {cost}")

        day = day or self.today()
        entry = self._day(day)
        new_alerts: list[BudgetAlert] = []

        with entry.lock:
            ledger = entry.ledger
            ledger.total_cost += cost
            ledger.request_count += 1
            key = str(task_type)
            ledger.task_breakdown[key] = ledger.task_breakdown.get(key, 0.0) + cost

            usage = ledger.total_cost / self._daily_cap
            for level, threshold in (
                (AlertLevel.WARNING, self._warning_threshold),
                (AlertLevel.CRITICAL, self._critical_threshold),
            ):
                if usage >= threshold and level not in entry.alerted:
                    entry.alerted.add(level)
                    new_alerts.append(
                        BudgetAlert(
                            level=level,
                            message=(
                                f"Daily budget {threshold:.0%} used "
                                f"(${ledger.total_cost:.2f} of ${self._daily_cap:.2f})"
                            ),
                            day=day,
                            total_cost=ledger.total_cost,
                            daily_cap=self._daily_cap,
                        )
                    )

            snapshot = self._copy(ledger)

        if day == self.today():
            record_daily_cost(snapshot.total_cost)

        log.debug(
            "cost_governor.spend_recorded",
            task_type=str(task_type),
            cost=cost,
            day=day.isoformat(),
            total_cost=snapshot.total_cost,
            daily_cap=self._daily_cap,
        )

        for alert in new_alerts:
            with self._alerts_lock:
                self._alerts.append(alert)
            record_budget_alert(alert.level)
            log.warning(
                "cost_governor.budget_alert",
                level=str(alert.level),
                message=alert.message,
                total_cost=alert.total_cost,
                daily_cap=alert.daily_cap,
            )

        return snapshot

    def spent_on(self, day: date) -> float:
        entry = self._days.get(day)
        if entry is None:
            return 0.0
        with entry.lock:
            return entry.ledger.total_cost

    def ledger_for(self, day: date) -> DailyCostLedger | None:
        entry = self._days.get(day)
        if entry is None:
            return None
        with entry.lock:
            return self._copy(entry.ledger)

    def ledgers(self) -> list[DailyCostLedger]:
        """Copies of every ledger, oldest first."""
        ledgers = []
        for entry in list(self._days.values()):
            with entry.lock:
                ledgers.append(self._copy(entry.ledger))
        return sorted(ledgers, key=lambda ledger: ledger.day)

    def alerts(self) -> list[BudgetAlert]:
        with self._alerts_lock:
            return list(self._alerts)

    def get_cost_analytics(self, days: int = 30) -> dict[str, Any]:
        """Summarize spend over the trailing window.

        Args:
            days: Window size in calendar days, ending today (inclusive)

        Returns:
            Dict with:
            - total_cost: USD spent in the window
            - average_daily_cost: total / days with spend
            - cost_trend: last 7 days vs the 7 before (10% band is stable)
            - top_task_types: up to 5 (task_type, cost, percentage) dicts
            - recommendations: operator-facing hints
        """
        if days < 1:
            raise ValueError("days must be at least 1")

        end = self.today()
        start = end - timedelta(days=days - 1)
        window = [ledger for ledger in self.ledgers() if start <= ledger.day <= end]

        total = sum(ledger.total_cost for ledger in window)
        average = total / max(len(window), 1)

        recent = window[-7:]
        older = window[-14:-7]
        trend = CostTrend.STABLE
        if recent and older:
            recent_avg = sum(d.total_cost for d in recent) / len(recent)
            older_avg = sum(d.total_cost for d in older) / len(older)
            if recent_avg > older_avg * 1.1:
                trend = CostTrend.INCREASING
            elif recent_avg < older_avg * 0.9:
                trend = CostTrend.DECREASING

        task_costs: dict[str, float] = {}
        for ledger in window:
            for task_type, cost in ledger.task_breakdown.items():
                task_costs[task_type] = task_costs.get(task_type, 0.0) + cost

        top_task_types = [
            {
                "task_type": task_type,
                "cost": cost,
                "percentage": (cost / total * 100.0) if total > 0 else 0.0,
            }
            for task_type, cost in sorted(task_costs.items(), key=lambda item: item[1], reverse=True)[:5]
        ]

        recommendations: list[str] = []
        if trend == CostTrend.INCREASING:
            recommendations.append("Consider enabling cost prioritization to reduce expenses")
        if average > self._daily_cap:
            recommendations.append("High daily costs detected - review provider selection strategy")
        if top_task_types and top_task_types[0]["percentage"] > 50:
            top = top_task_types[0]
            recommendations.append(
                f"{top['task_type']} accounts for {top['percentage']:.1f}% of costs "
                "- consider optimization"
            )
        if not recommendations:
            recommendations.append("Cost optimization is performing well")

        return {
            "total_cost": total,
            "average_daily_cost": average,
            "cost_trend": trend,
            "top_task_types": top_task_types,
            "recommendations": recommendations,
        }

    def _cheapest_selection(
        self,
        task_type: TaskType | str,
        estimated_tokens: int,
        *,
        spent: float,
        cap: float,
        reason: str,
    ) -> ModelSelection:
        eligible = [
            profile.provider_id
            for profile in self._registry.profiles()
            if profile.max_context_tokens >= estimated_tokens
            and not self._breakers.is_open(profile.provider_id)
        ]
        # Nothing fits; ignore fit rather than fail
        ranked = self._registry.by_cost(eligible or None)
        cheapest = ranked[0]

        log.warning(
            "cost_governor.budget_override",
            task_type=str(task_type),
            provider=cheapest.provider_id,
            spent_today=spent,
            daily_cap=cap,
        )

        return ModelSelection(
            provider_id=cheapest.provider_id,
            reasoning=reason,
            estimated_cost=cheapest.estimate_cost(estimated_tokens),
            estimated_response_time_ms=cheapest.mean_latency_ms,
            fallback_providers=tuple(p.provider_id for p in ranked[1:3]),
            confidence=self._router.provider_confidence(cheapest.provider_id, task_type),
            candidates=tuple(p.provider_id for p in ranked),
            savings_opportunity=None,
            budget_constrained=True,
        )

    def _day(self, day: date) -> _Day:
        entry = self._days.get(day)
        if entry is None:
            entry = self._days.setdefault(day, _Day(DailyCostLedger(day)))
            log.debug("cost_governor.ledger_created", day=day.isoformat())
        return entry

    @staticmethod
    def _copy(ledger: DailyCostLedger) -> DailyCostLedger:
        return replace(ledger, task_breakdown=dict(ledger.task_breakdown))
