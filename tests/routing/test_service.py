"""Tests for RoutingService wiring and the end-to-end handle() pipeline."""

from __future__ import annotations

import logging

import pytest
import structlog

from tutor_ai.routing.errors import ProvidersExhaustedError
from tutor_ai.routing.metrics import PerformanceSample
from tutor_ai.routing.service import RoutingResult, RoutingService
from tutor_ai.routing.types import ComplexityTier, TaskConstraints, TaskRequest, TaskType


@pytest.fixture
def service(fake_settings) -> RoutingService:
    return RoutingService.from_settings(fake_settings)


@pytest.fixture
def research_request() -> TaskRequest:
    return TaskRequest(
        prompt="Find the strongest tournament decks in the current format",
        context={"requires_research": True},
        task_type_hint=TaskType.RESEARCH,
    )


# ------------------------------------------------------------------ #
# Construction
# ------------------------------------------------------------------ #


def test_from_settings_registers_breaker_per_provider(service):
    """Test every registered provider starts with a closed breaker."""
    report = service.health_report()

    assert len(report["providers"]) == len(service.registry)
    assert report["overall_health"] == "healthy"
    assert report["recommendations"] == ["All systems operating normally"]


def test_from_settings_applies_configuration(fake_settings):
    """Test settings reach the governor and executor."""
    settings = fake_settings.model_copy(update={"daily_cost_cap_usd": 2.5})

    service = RoutingService.from_settings(settings)

    assert service.governor.daily_cap == 2.5


def test_from_settings_applies_log_settings(fake_settings):
    """Test log level from settings reaches the root logger."""
    root = logging.getLogger()
    previous = root.level
    settings = fake_settings.model_copy(update={"log_level": "WARNING", "json_logs": True})

    try:
        RoutingService.from_settings(settings)
        assert root.level == logging.WARNING
    finally:
        root.setLevel(previous)


# ------------------------------------------------------------------ #
# Routing
# ------------------------------------------------------------------ #


def test_route_classifies_then_optimizes(service, research_request):
    """Test route() returns a cost-aware selection for the classified request."""
    classification = service.classify(research_request)
    selection = service.route(research_request)

    assert classification.task_type == TaskType.RESEARCH
    assert classification.complexity == ComplexityTier.RESEARCH
    assert selection.provider_id == "gpt-4o"
    assert selection.savings_opportunity is not None
    assert selection.provider_id not in selection.fallback_providers


def test_route_honours_request_constraints(service, research_request):
    """Test hard constraints on the request reach the router."""
    request = TaskRequest(
        prompt=research_request.prompt,
        context=research_request.context,
        task_type_hint=TaskType.RESEARCH,
        constraints=TaskConstraints(max_response_time_ms=4500),
    )

    selection = service.route(request)

    assert selection.provider_id == "gpt-4o"
    assert selection.candidates == ("gpt-4o",)


def test_record_feeds_router_history(service):
    """Test externally recorded samples become visible to the tracker."""
    service.record("gpt-4o", TaskType.SYNERGY_ANALYSIS, PerformanceSample(success=True, latency_ms=900))

    record = service.tracker.query("gpt-4o", "synergy-analysis")
    assert record.total_requests == 1


# ------------------------------------------------------------------ #
# handle()
# ------------------------------------------------------------------ #


async def test_handle_executes_and_records_spend(service, research_request, make_response):
    """Test handle() runs the chosen provider and adds its cost to today's ledger once."""

    async def task_fn(provider_id: str):
        return make_response(content=f"decks via {provider_id}", cost=0.05)

    result = await service.handle(research_request, task_fn)

    assert isinstance(result, RoutingResult)
    assert result.outcome.success is True
    assert result.outcome.provider_used == result.selection.provider_id
    assert result.outcome.content == f"decks via {result.selection.provider_id}"

    ledger = service.governor.ledger_for(service.governor.today())
    assert ledger.total_cost == pytest.approx(0.05)
    assert ledger.request_count == 1
    assert ledger.task_breakdown == {"research": pytest.approx(0.05)}


async def test_handle_falls_back_when_primary_fails(service, research_request, make_response):
    """Test a failing primary is reported in fallbacks_used."""

    async def task_fn(provider_id: str):
        if provider_id == "gpt-4o":
            raise ConnectionError("gpt-4o down")
        return make_response(cost=0.01)

    result = await service.handle(research_request, task_fn)

    assert result.outcome.provider_used != "gpt-4o"
    assert result.outcome.fallbacks_used == ("gpt-4o",)
    assert service.breakers.is_open("gpt-4o") is True


async def test_handle_binds_log_context(service, research_request, make_response):
    """Test request and task context are bound while the provider runs."""
    seen = {}

    async def task_fn(provider_id: str):
        seen.update(structlog.contextvars.get_contextvars())
        return make_response()

    await service.handle(research_request, task_fn, request_id="req_test")

    assert seen["request_id"] == "req_test"
    assert seen["task_type"] == "research"
    assert seen["complexity"] == "research"
    assert "request_id" not in structlog.contextvars.get_contextvars()


async def test_handle_keeps_caller_log_context(service, research_request, make_response):
    """Test handle() only removes the keys it bound itself."""
    structlog.contextvars.bind_contextvars(session_id="sess_1")

    async def task_fn(provider_id: str):
        return make_response()

    await service.handle(research_request, task_fn)

    assert structlog.contextvars.get_contextvars() == {"session_id": "sess_1"}


async def test_handle_exhaustion_records_no_spend(service, research_request):
    """Test a request where every provider fails raises and leaves the ledger untouched."""

    async def task_fn(provider_id: str):
        raise ConnectionError(f"{provider_id} down")

    with pytest.raises(ProvidersExhaustedError):
        await service.handle(research_request, task_fn)

    assert service.governor.ledger_for(service.governor.today()) is None


def test_cost_analytics_delegates_to_governor(service):
    """Test analytics are available before any spend."""
    analytics = service.cost_analytics(days=7)

    assert analytics["total_cost"] == 0.0
