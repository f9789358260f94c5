"""
Shared test fixtures for pytest.

Provides common stores and helpers for all test modules:
- fake_settings: Test environment configuration
- registry: Default capability registry
- tracker: Empty performance tracker with a seeded RNG
- breakers: Circuit breaker registry with the default threshold
- router / governor / executor: Components wired to the stores above
- fixed_now: Fixed UTC timestamp used as the governor clock
- make_response: Helper building ProviderResponse objects
"""

from __future__ import annotations

import random
from datetime import UTC, datetime

import pytest
import structlog

from tutor_ai.config import Settings, get_settings
from tutor_ai.routing.budget import CostGovernor
from tutor_ai.routing.capabilities import CapabilityRegistry
from tutor_ai.routing.circuit_breaker import CircuitBreakerRegistry
from tutor_ai.routing.fallback import FallbackExecutor
from tutor_ai.routing.metrics import PerformanceTracker
from tutor_ai.routing.router import ModelRouter
from tutor_ai.routing.types import ProviderResponse, TokenUsage


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Keep bound structlog context from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


# ------------------------------------------------------------------ #
# Settings
# ------------------------------------------------------------------ #

@pytest.fixture
def fake_settings() -> Settings:
    """Return a Settings instance suitable for testing."""
    return Settings(
        environment="test",
        litellm_base_url="http://localhost:4000",
        litellm_api_key="sk-test",
        retry_base_delay_ms=0,
        provider_timeout_seconds=1.0,
    )


# ------------------------------------------------------------------ #
# Routing stores and components
# ------------------------------------------------------------------ #

@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 3, 14, 12, 0, tzinfo=UTC)


@pytest.fixture
def registry() -> CapabilityRegistry:
    return CapabilityRegistry()


@pytest.fixture
def tracker() -> PerformanceTracker:
    return PerformanceTracker(reservoir_size=100, rng=random.Random(42))


@pytest.fixture
def breakers() -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(threshold=0.5)


@pytest.fixture
def router(registry: CapabilityRegistry, tracker: PerformanceTracker) -> ModelRouter:
    return ModelRouter(registry, tracker)


@pytest.fixture
def governor(
    registry: CapabilityRegistry,
    router: ModelRouter,
    breakers: CircuitBreakerRegistry,
    fixed_now: datetime,
) -> CostGovernor:
    return CostGovernor(
        registry,
        router,
        breakers,
        daily_cap_usd=10.0,
        clock=lambda: fixed_now,
    )


@pytest.fixture
def executor(breakers: CircuitBreakerRegistry, tracker: PerformanceTracker) -> FallbackExecutor:
    """Executor with no backoff delay so retry rounds run instantly."""
    return FallbackExecutor(
        breakers,
        tracker,
        max_retries=3,
        base_delay_seconds=0.0,
        provider_timeout_seconds=1.0,
    )


@pytest.fixture
def make_response():
    """Factory for ProviderResponse objects."""

    def _make(content: str = "ok", cost: float = 0.01, input_tokens: int = 100, output_tokens: int = 50):
        return ProviderResponse(
            content=content,
            token_usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
            cost=cost,
        )

    return _make
