"""Rolling performance history per (provider, task type).

The PerformanceTracker keeps O(1)-size aggregates for every provider and
task type pair: request/success counters plus running averages of latency,
cost and user satisfaction. The router reads it to bias provider scores
and confidence; the executor writes to it after every attempt.

Metrics tracked:
- total_requests / successful_requests (success rate)
- average_response_time_ms, average_cost (running means)
- user_satisfaction (0-10, running mean over scored samples only)
- fixed-size latency reservoir for percentile queries

Thread safety: one threading.Lock per (provider, task type) key. Updates
are short and contain no awaits, so concurrent asyncio tasks and worker
threads can record without contending on a global lock.
"""

from __future__ import annotations

import math
import random
import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

import structlog

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PerformanceSample:
    """Outcome of one completed provider attempt.

    Attributes:
        success: Whether the attempt produced usable content
        latency_ms: Response latency in milliseconds
        cost: Actual USD cost of the attempt
        user_satisfaction: Optional user rating (0-10)
    """

    success: bool
    latency_ms: float = 0.0
    cost: float = 0.0
    user_satisfaction: float | None = None

    def __post_init__(self) -> None:
        if self.user_satisfaction is not None and not 0.0 <= self.user_satisfaction <= 10.0:
            raise ValueError(
                f"user_satisfaction must be 0.0-10.0, got {self.user_satisfaction}"
            )


@dataclass
class ProviderPerformanceRecord:
    """Running aggregates for one (provider, task type) pair.

    Attributes:
        provider_id: Provider identifier
        task_type: Task type the history applies to
        total_requests: Attempts recorded
        successful_requests: Successful attempts recorded
        average_response_time_ms: Running mean latency
        average_cost: Running mean cost
        user_satisfaction: Running mean of supplied ratings
        satisfaction_samples: Number of ratings folded into user_satisfaction
        last_updated: Time of the most recent update
        latency_reservoir: Uniform sample of observed latencies
    """

    provider_id: str
    task_type: str
    total_requests: int = 0
    successful_requests: int = 0
    average_response_time_ms: float = 0.0
    average_cost: float = 0.0
    user_satisfaction: float = 0.0
    satisfaction_samples: int = 0
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))
    latency_reservoir: list[float] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    def latency_percentile(self, percentile: float) -> float | None:
        """Nearest-rank latency percentile from the reservoir.

        Args:
            percentile: Percentile in 0-100

        Returns:
            Latency in milliseconds, or None when nothing has been sampled
        """
        if not 0.0 <= percentile <= 100.0:
            raise ValueError(f"percentile must be 0-100, got {percentile}")
        if not self.latency_reservoir:
            return None

        ordered = sorted(self.latency_reservoir)
        index = max(0, min(len(ordered) - 1, math.ceil(percentile / 100.0 * len(ordered)) - 1))
        return ordered[index]


def running_average(current: float, value: float, count: int) -> float:
    """Fold ``value`` into a mean that already covers ``count - 1`` values."""
    if count <= 0:
        raise ValueError("count must be positive")
    return (current * (count - 1) + value) / count


@dataclass
class _Entry:
    record: ProviderPerformanceRecord
    lock: threading.Lock = field(default_factory=threading.Lock)
    seen: int = 0  # latency observations offered to the reservoir


class PerformanceTracker:
    """Collects per-provider, per-task-type outcome aggregates.

    Missing records are not an error: callers treat ``None`` from query()
    as "no history, use static defaults".
    """

    def __init__(self, reservoir_size: int = 100, *, rng: random.Random | None = None) -> None:
        """Initialize tracker.

        Args:
            reservoir_size: Latency samples kept per key for percentiles
            rng: Random source for reservoir replacement (injectable for tests)
        """
        if reservoir_size < 1:
            raise ValueError("reservoir_size must be positive")

        self._reservoir_size = reservoir_size
        self._rng = rng or random.Random()
        # Key: (provider_id, task_type)
        self._entries: dict[tuple[str, str], _Entry] = {}

        log.info("performance_tracker.initialized", reservoir_size=reservoir_size)

    def record(self, provider_id: str, task_type: str, sample: PerformanceSample) -> None:
        """Fold one attempt outcome into the running aggregates.

        Args:
            provider_id: Provider that served the attempt
            task_type: Task type of the request
            sample: Attempt outcome
        """
        key = (provider_id, str(task_type))
        entry = self._entries.get(key)
        if entry is None:
            # setdefault is atomic, so two first writers share one entry
            entry = self._entries.setdefault(
                key, _Entry(ProviderPerformanceRecord(provider_id, str(task_type)))
            )

        with entry.lock:
            record = entry.record
            record.total_requests += 1
            if sample.success:
                record.successful_requests += 1

            n = record.total_requests
            record.average_response_time_ms = running_average(
                record.average_response_time_ms, sample.latency_ms, n
            )
            record.average_cost = running_average(record.average_cost, sample.cost, n)

            if sample.user_satisfaction is not None:
                record.satisfaction_samples += 1
                record.user_satisfaction = running_average(
                    record.user_satisfaction,
                    sample.user_satisfaction,
                    record.satisfaction_samples,
                )

            self._offer_latency(entry, sample.latency_ms)
            record.last_updated = datetime.now(UTC)

            success_rate = record.success_rate
            avg_latency = record.average_response_time_ms
            avg_cost = record.average_cost

        log.debug(
            "performance_tracker.recorded",
            provider=provider_id,
            task_type=str(task_type),
            success=sample.success,
            success_rate=round(success_rate, 3),
            avg_latency_ms=round(avg_latency, 1),
            avg_cost=avg_cost,
        )

    def query(self, provider_id: str, task_type: str) -> ProviderPerformanceRecord | None:
        """Return a copy of the record for a pair, or None when there is no history."""
        entry = self._entries.get((provider_id, str(task_type)))
        if entry is None:
            return None
        with entry.lock:
            return self._copy(entry.record)

    def records_for(self, provider_id: str) -> list[ProviderPerformanceRecord]:
        """All task-type records for one provider."""
        records = []
        for (provider, _task_type), entry in list(self._entries.items()):
            if provider != provider_id:
                continue
            with entry.lock:
                records.append(self._copy(entry.record))
        return records

    def provider_success_rate(self, provider_id: str) -> float | None:
        """Success rate across every task type, or None without history."""
        records = self.records_for(provider_id)
        total = sum(r.total_requests for r in records)
        if total == 0:
            return None
        return sum(r.successful_requests for r in records) / total

    def snapshot(self) -> list[ProviderPerformanceRecord]:
        """Copies of every record, for dashboards and analytics export."""
        snapshot = []
        for entry in list(self._entries.values()):
            with entry.lock:
                snapshot.append(self._copy(entry.record))
        return snapshot

    def reset(self) -> None:
        """Drop all history. Used for testing."""
        self._entries.clear()
        log.debug("performance_tracker.reset")

    def _offer_latency(self, entry: _Entry, latency_ms: float) -> None:
        # Algorithm R: every observation ends up in the reservoir with equal probability
        entry.seen += 1
        reservoir = entry.record.latency_reservoir
        if len(reservoir) < self._reservoir_size:
            reservoir.append(latency_ms)
            return
        slot = self._rng.randrange(entry.seen)
        if slot < self._reservoir_size:
            reservoir[slot] = latency_ms

    @staticmethod
    def _copy(record: ProviderPerformanceRecord) -> ProviderPerformanceRecord:
        return replace(record, latency_reservoir=list(record.latency_reservoir))
