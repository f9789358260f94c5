"""Prometheus instrumentation for provider routing.

Metrics exported:
- provider_attempts_total: Counter of provider calls by provider, status
- provider_attempt_duration_seconds: Histogram of provider call latencies
- provider_tokens_total: Counter of tokens consumed by provider, token type
- circuit_breaker_open: Gauge (0/1) of circuit state per provider
- daily_cost_usd: Gauge of today's spend
- budget_alerts_total: Counter of budget alerts by level

Design:
- Uses prometheus_client with a dedicated registry so the host process can
  expose it next to its own collectors
- Collectors are updated from the executor, circuit registry and cost
  governor; nothing here reads them back
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry to avoid conflicts with other prometheus exporters
REGISTRY = CollectorRegistry(auto_describe=True)


# ------------------------------------------------------------------ #
# Provider Metrics
# ------------------------------------------------------------------ #

provider_attempts_total = Counter(
    "provider_attempts_total",
    "Total provider call attempts",
    ["provider", "status"],
    registry=REGISTRY,
)

provider_attempt_duration_seconds = Histogram(
    "provider_attempt_duration_seconds",
    "Provider call latency in seconds",
    ["provider"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

provider_tokens_total = Counter(
    "provider_tokens_total",
    "Total tokens consumed",
    ["provider", "token_type"],
    registry=REGISTRY,
)

circuit_breaker_open = Gauge(
    "circuit_breaker_open",
    "1 when the provider's circuit is open, 0 when closed",
    ["provider"],
    registry=REGISTRY,
)


# ------------------------------------------------------------------ #
# Cost Metrics
# ------------------------------------------------------------------ #

daily_cost_usd = Gauge(
    "daily_cost_usd",
    "Spend recorded in today's cost ledger",
    registry=REGISTRY,
)

budget_alerts_total = Counter(
    "budget_alerts_total",
    "Budget alerts raised",
    ["level"],
    registry=REGISTRY,
)


# ------------------------------------------------------------------ #
# Instrumentation Functions
# ------------------------------------------------------------------ #


def record_provider_attempt(
    provider: str,
    status: str,
    duration_seconds: float,
    input_tokens: int = 0,
    output_tokens: int = 0,
) -> None:
    """Record a single provider call.

    Args:
        provider: Provider identifier
        status: Attempt status (success, error, timeout)
        duration_seconds: Call duration in seconds
        input_tokens: Prompt tokens consumed
        output_tokens: Completion tokens consumed
    """
    provider_attempts_total.labels(provider=provider, status=status).inc()
    provider_attempt_duration_seconds.labels(provider=provider).observe(duration_seconds)

    if input_tokens:
        provider_tokens_total.labels(provider=provider, token_type="input").inc(input_tokens)
    if output_tokens:
        provider_tokens_total.labels(provider=provider, token_type="output").inc(output_tokens)


def set_circuit_state(provider: str, is_open: bool) -> None:
    """Mirror a circuit transition into the gauge."""
    circuit_breaker_open.labels(provider=provider).set(1 if is_open else 0)


def record_daily_cost(total_cost: float) -> None:
    daily_cost_usd.set(total_cost)


def record_budget_alert(level: str) -> None:
    budget_alerts_total.labels(level=level).inc()


def render_metrics() -> tuple[bytes, str]:
    """Render the registry in exposition format.

    Returns:
        Tuple of (payload, content type) ready for an HTTP response
    """
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
