"""Provider routing for deck-building assistant generation requests.

This package decides which LLM provider serves each request and executes
it resiliently:
- Task classification (type, complexity tier, token estimate)
- Rule-driven provider selection with performance history
- Daily cost governance and budget alerts
- Circuit breakers and fallback execution with retry rounds

All stores are in-memory and owned by RoutingService.
"""

from __future__ import annotations

from tutor_ai.routing.budget import BudgetAlert, CostGovernor, DailyCostLedger
from tutor_ai.routing.capabilities import CapabilityRegistry, ProviderCapabilityProfile
from tutor_ai.routing.circuit_breaker import (
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitState,
)
from tutor_ai.routing.classifier import TaskClassifier
from tutor_ai.routing.errors import (
    ExecutionCancelledError,
    ProvidersExhaustedError,
    RoutingError,
    UnknownProviderError,
)
from tutor_ai.routing.fallback import FallbackExecutor
from tutor_ai.routing.metrics import (
    PerformanceSample,
    PerformanceTracker,
    ProviderPerformanceRecord,
)
from tutor_ai.routing.router import ModelRouter, TaskRule
from tutor_ai.routing.service import RoutingResult, RoutingService
from tutor_ai.routing.types import (
    ComplexityTier,
    ExecutionOutcome,
    ModelSelection,
    OutputShape,
    ProviderResponse,
    TaskClassification,
    TaskConstraints,
    TaskRequest,
    TaskType,
    TokenUsage,
)

__all__ = [
    "BudgetAlert",
    "CapabilityRegistry",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitState",
    "ComplexityTier",
    "CostGovernor",
    "DailyCostLedger",
    "ExecutionCancelledError",
    "ExecutionOutcome",
    "FallbackExecutor",
    "ModelRouter",
    "ModelSelection",
    "OutputShape",
    "PerformanceSample",
    "PerformanceTracker",
    "ProviderCapabilityProfile",
    "ProviderPerformanceRecord",
    "ProviderResponse",
    "ProvidersExhaustedError",
    "RoutingError",
    "RoutingResult",
    "RoutingService",
    "TaskClassification",
    "TaskClassifier",
    "TaskConstraints",
    "TaskRequest",
    "TaskRule",
    "TaskType",
    "TokenUsage",
    "UnknownProviderError",
]
