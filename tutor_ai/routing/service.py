"""Routing service - one entry point over the whole routing pipeline.

RoutingService owns one instance of every store (capability registry,
performance tracker, circuit breakers, cost ledgers) and wires the
classifier, router, cost governor and executor around them:

    request -> classify -> select provider -> optimize cost
            -> execute with fallback -> record spend -> RoutingResult

Callers that only need part of the pipeline can use the individual
operations (classify, select_provider, optimize, execute_with_fallback,
record) directly.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from tutor_ai.config import get_settings
from tutor_ai.routing.budget import CostGovernor
from tutor_ai.routing.capabilities import CapabilityRegistry
from tutor_ai.routing.circuit_breaker import CircuitBreakerRegistry
from tutor_ai.routing.classifier import TaskClassifier
from tutor_ai.routing.fallback import FallbackExecutor
from tutor_ai.routing.metrics import PerformanceSample, PerformanceTracker
from tutor_ai.routing.router import ModelRouter
from tutor_ai.routing.types import (
    ComplexityTier,
    ExecutionOutcome,
    ModelSelection,
    TaskClassification,
    TaskConstraints,
    TaskFn,
    TaskRequest,
    TaskType,
)
from tutor_ai.telemetry.logging import (
    bind_request_context,
    bind_task_context,
    configure_logging,
    unbind_routing_context,
)

if TYPE_CHECKING:
    from tutor_ai.config import Settings

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RoutingResult:
    """Everything decided and observed for one handled request."""

    classification: TaskClassification
    selection: ModelSelection
    outcome: ExecutionOutcome


class RoutingService:
    """Facade over classifier, router, cost governor and executor."""

    def __init__(
        self,
        *,
        classifier: TaskClassifier,
        registry: CapabilityRegistry,
        tracker: PerformanceTracker,
        breakers: CircuitBreakerRegistry,
        router: ModelRouter,
        governor: CostGovernor,
        executor: FallbackExecutor,
    ) -> None:
        self.classifier = classifier
        self.registry = registry
        self.tracker = tracker
        self.breakers = breakers
        self.router = router
        self.governor = governor
        self.executor = executor

        for provider_id in registry.providers():
            breakers.register(provider_id)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        registry: CapabilityRegistry | None = None,
        setup_logging: bool = True,
    ) -> RoutingService:
        """Build a fully wired service from configuration.

        Args:
            settings: Application settings. If None, uses get_settings().
            registry: Capability registry. If None, uses the default catalog.
            setup_logging: Apply the log level and renderer from settings
        """
        settings = settings or get_settings()
        if setup_logging:
            configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
        registry = registry or CapabilityRegistry()
        tracker = PerformanceTracker(reservoir_size=settings.latency_reservoir_size)

        half_open_after = (
            timedelta(seconds=settings.circuit_half_open_after_seconds)
            if settings.circuit_half_open_after_seconds is not None
            else None
        )
        breakers = CircuitBreakerRegistry(
            threshold=settings.circuit_breaker_threshold,
            half_open_after=half_open_after,
        )

        router = ModelRouter(
            registry,
            tracker,
            min_history_samples=settings.min_history_samples,
            prioritize_cost=settings.prioritize_cost,
            prioritize_speed=settings.prioritize_speed,
        )
        governor = CostGovernor(
            registry,
            router,
            breakers,
            daily_cap_usd=settings.daily_cost_cap_usd,
            warning_threshold=settings.budget_warning_threshold,
            critical_threshold=settings.budget_critical_threshold,
            prioritize_cost=settings.prioritize_cost,
            prioritize_speed=settings.prioritize_speed,
        )
        executor = FallbackExecutor(
            breakers,
            tracker,
            max_retries=settings.max_retries,
            base_delay_seconds=settings.retry_base_delay_ms / 1000,
            provider_timeout_seconds=settings.provider_timeout_seconds,
        )

        log.info(
            "routing_service.created",
            environment=str(settings.environment),
            providers=len(registry),
        )

        return cls(
            classifier=TaskClassifier(),
            registry=registry,
            tracker=tracker,
            breakers=breakers,
            router=router,
            governor=governor,
            executor=executor,
        )

    # ------------------------------------------------------------------ #
    # Pipeline stages
    # ------------------------------------------------------------------ #

    def classify(self, request: TaskRequest) -> TaskClassification:
        return self.classifier.classify(request)

    def select_provider(
        self,
        task_type: TaskType | str,
        complexity: ComplexityTier,
        constraints: TaskConstraints | None = None,
    ) -> ModelSelection:
        return self.router.select_provider(task_type, complexity, constraints)

    def optimize(
        self,
        task_type: TaskType | str,
        complexity: ComplexityTier,
        estimated_tokens: int,
        daily_budget: float | None = None,
        constraints: TaskConstraints | None = None,
    ) -> ModelSelection:
        return self.governor.optimize(
            task_type, complexity, estimated_tokens, daily_budget, constraints
        )

    async def execute_with_fallback(
        self,
        primary: str,
        fallback_chain: Sequence[str],
        task_fn: TaskFn,
        *,
        task_type: TaskType | str,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionOutcome:
        return await self.executor.execute_with_fallback(
            primary,
            fallback_chain,
            task_fn,
            task_type=task_type,
            cancel_event=cancel_event,
        )

    def record(self, provider_id: str, task_type: TaskType | str, sample: PerformanceSample) -> None:
        """Record an outcome observed outside the executor (e.g. user ratings)."""
        self.tracker.record(provider_id, str(task_type), sample)

    # ------------------------------------------------------------------ #
    # Composite operations
    # ------------------------------------------------------------------ #

    def route(self, request: TaskRequest) -> ModelSelection:
        """Classify a request and return its cost-aware provider selection."""
        _, selection = self._route(request)
        return selection

    async def handle(
        self,
        request: TaskRequest,
        task_fn: TaskFn,
        *,
        cancel_event: asyncio.Event | None = None,
        request_id: str | None = None,
    ) -> RoutingResult:
        """Route and execute a request, recording its spend.

        Args:
            request: Request to handle
            task_fn: Async provider call, invoked with the provider ID
            cancel_event: Set to abandon the call between attempts
            request_id: Correlation ID for logs (generated when omitted)

        Returns:
            RoutingResult with classification, selection and outcome

        Raises:
            ProvidersExhaustedError: If every provider failed in every round
            ExecutionCancelledError: If cancel_event was set
        """
        bind_request_context(request_id)
        try:
            classification, selection = self._route(request)
            bind_task_context(str(classification.task_type), str(classification.complexity))

            outcome = await self.execute_with_fallback(
                selection.provider_id,
                selection.fallback_providers,
                task_fn,
                task_type=classification.task_type,
                cancel_event=cancel_event,
            )
            self.governor.record_spend(classification.task_type, outcome.actual_cost)

            log.info(
                "routing_service.handled",
                provider=outcome.provider_used,
                attempts=outcome.attempts_count,
                fallbacks_used=list(outcome.fallbacks_used),
                actual_cost=outcome.actual_cost,
                estimated_cost=selection.estimated_cost,
            )
        finally:
            unbind_routing_context()

        return RoutingResult(classification=classification, selection=selection, outcome=outcome)

    # ------------------------------------------------------------------ #
    # Read accessors
    # ------------------------------------------------------------------ #

    def health_report(self) -> dict[str, Any]:
        return self.breakers.health_report()

    def cost_analytics(self, days: int = 30) -> dict[str, Any]:
        return self.governor.get_cost_analytics(days)

    def _route(self, request: TaskRequest) -> tuple[TaskClassification, ModelSelection]:
        classification = self.classify(request)
        selection = self.optimize(
            classification.task_type,
            classification.complexity,
            classification.estimated_tokens,
            constraints=request.constraints,
        )
        return classification, selection
