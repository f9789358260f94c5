"""Tests for PerformanceTracker.

Tests cover:
- Running averages of latency, cost and satisfaction
- Success rate accounting
- Missing history returns None
- Latency reservoir bounds and percentiles
- Concurrent recording from threads
"""

from __future__ import annotations

import random
import threading

import pytest

from tutor_ai.routing.metrics import (
    PerformanceSample,
    PerformanceTracker,
    ProviderPerformanceRecord,
    running_average,
)


# ------------------------------------------------------------------ #
# Running averages
# ------------------------------------------------------------------ #


def test_running_average_formula():
    """Test incremental mean matches the batch mean."""
    values = [10.0, 20.0, 60.0]
    mean = 0.0
    for n, value in enumerate(values, start=1):
        mean = running_average(mean, value, n)

    assert mean == pytest.approx(30.0)


def test_running_average_rejects_zero_count():
    """Test count must be positive."""
    with pytest.raises(ValueError):
        running_average(1.0, 2.0, 0)


def test_identical_latencies_average_to_that_latency(tracker):
    """Test ten equal latencies L give an average of exactly L."""
    for _ in range(10):
        tracker.record("gpt-4o", "synergy-analysis", PerformanceSample(success=True, latency_ms=250.0))

    record = tracker.query("gpt-4o", "synergy-analysis")

    assert record.average_response_time_ms == pytest.approx(250.0)
    assert record.total_requests == 10


def test_cost_and_success_rate_accumulate(tracker):
    """Test cost mean and success rate over mixed outcomes."""
    tracker.record("gpt-4o", "optimization", PerformanceSample(success=True, latency_ms=100, cost=0.02))
    tracker.record("gpt-4o", "optimization", PerformanceSample(success=False, latency_ms=300, cost=0.0))
    tracker.record("gpt-4o", "optimization", PerformanceSample(success=True, latency_ms=200, cost=0.04))

    record = tracker.query("gpt-4o", "optimization")

    assert record.successful_requests == 2
    assert record.success_rate == pytest.approx(2 / 3)
    assert record.average_cost == pytest.approx(0.02)
    assert record.average_response_time_ms == pytest.approx(200.0)


def test_satisfaction_averages_only_rated_samples(tracker):
    """Test unrated samples do not drag the satisfaction mean down."""
    tracker.record("claude-3-opus", "research", PerformanceSample(success=True, user_satisfaction=8.0))
    tracker.record("claude-3-opus", "research", PerformanceSample(success=True))
    tracker.record("claude-3-opus", "research", PerformanceSample(success=True, user_satisfaction=6.0))

    record = tracker.query("claude-3-opus", "research")

    assert record.user_satisfaction == pytest.approx(7.0)
    assert record.satisfaction_samples == 2


def test_satisfaction_out_of_range_rejected():
    """Test satisfaction must be 0-10."""
    with pytest.raises(ValueError):
        PerformanceSample(success=True, user_satisfaction=11.0)


# ------------------------------------------------------------------ #
# Queries
# ------------------------------------------------------------------ #


def test_query_without_history_returns_none(tracker):
    """Test a missing record is not an error."""
    assert tracker.query("gpt-4o", "selection") is None
    assert tracker.provider_success_rate("gpt-4o") is None


def test_query_returns_copy(tracker):
    """Test callers cannot mutate tracker state through query()."""
    tracker.record("gpt-4o", "selection", PerformanceSample(success=True, latency_ms=100))

    record = tracker.query("gpt-4o", "selection")
    record.total_requests = 999
    record.latency_reservoir.append(1.0)

    fresh = tracker.query("gpt-4o", "selection")
    assert fresh.total_requests == 1
    assert fresh.latency_reservoir == [100]


def test_records_for_and_provider_success_rate(tracker):
    """Test per-provider aggregation across task types."""
    tracker.record("gpt-4o", "selection", PerformanceSample(success=True))
    tracker.record("gpt-4o", "research", PerformanceSample(success=False))
    tracker.record("gpt-4o", "research", PerformanceSample(success=True))
    tracker.record("gpt-4", "research", PerformanceSample(success=False))

    assert {r.task_type for r in tracker.records_for("gpt-4o")} == {"selection", "research"}
    assert tracker.provider_success_rate("gpt-4o") == pytest.approx(2 / 3)
    assert len(tracker.snapshot()) == 3


def test_reset_drops_history(tracker):
    """Test reset() clears every record."""
    tracker.record("gpt-4o", "selection", PerformanceSample(success=True))

    tracker.reset()

    assert tracker.snapshot() == []


# ------------------------------------------------------------------ #
# Latency reservoir
# ------------------------------------------------------------------ #


def test_reservoir_is_bounded():
    """Test the reservoir never grows past its configured size."""
    tracker = PerformanceTracker(reservoir_size=5, rng=random.Random(1))

    for latency in range(100):
        tracker.record("gpt-4o", "selection", PerformanceSample(success=True, latency_ms=float(latency)))

    record = tracker.query("gpt-4o", "selection")
    assert len(record.latency_reservoir) == 5
    assert record.total_requests == 100


def test_latency_percentile_nearest_rank():
    """Test nearest-rank percentiles over the reservoir."""
    record = ProviderPerformanceRecord(
        provider_id="gpt-4o",
        task_type="selection",
        latency_reservoir=[float(v) for v in range(1, 11)],
    )

    assert record.latency_percentile(50) == 5.0
    assert record.latency_percentile(90) == 9.0
    assert record.latency_percentile(100) == 10.0
    assert record.latency_percentile(0) == 1.0


def test_latency_percentile_empty_and_invalid():
    """Test empty reservoir returns None and bad percentiles raise."""
    record = ProviderPerformanceRecord(provider_id="gpt-4o", task_type="selection")

    assert record.latency_percentile(50) is None
    with pytest.raises(ValueError):
        record.latency_percentile(150)


# ------------------------------------------------------------------ #
# Concurrency
# ------------------------------------------------------------------ #


def test_concurrent_records_are_not_lost(tracker):
    """Test parallel writers on the same key lose no updates."""

    def _writer():
        for _ in range(200):
            tracker.record("gpt-4o", "selection", PerformanceSample(success=True, latency_ms=10.0))

    threads = [threading.Thread(target=_writer) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    record = tracker.query("gpt-4o", "selection")
    assert record.total_requests == 1600
    assert record.average_response_time_ms == pytest.approx(10.0)
