"""Per-provider circuit breakers driven by observed outcomes.

Each provider has a two-state breaker:

- CLOSED: provider is eligible for attempts
- OPEN: provider is skipped by the executor and the cost governor

Transitions:
1. After a failure, CLOSED -> OPEN when success rate drops below threshold
2. After a success, OPEN -> CLOSED when success rate rises above threshold

Recovery is outcome-driven: an OPEN provider only closes again when a
success is recorded for it. ``half_open_after`` is the extension point for
timed probing; when set, an OPEN breaker reports itself available once it
has been open that long so a single request can probe it.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

import structlog

from tutor_ai.telemetry.prometheus import set_circuit_state

log = structlog.get_logger(__name__)


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"


class ProviderHealth(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CIRCUIT_OPEN = "circuit_open"


class OverallHealth(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass
class CircuitBreakerState:
    """Breaker state for one provider.

    Attributes:
        provider_id: Provider identifier
        state: CLOSED or OPEN
        failure_count: Failures recorded since creation
        success_count: Successes recorded since creation
        success_rate: successes / (successes + failures), 1.0 before any outcome
        last_failure: Time of the most recent failure
        last_success: Time of the most recent success
        opened_at: When the breaker last opened (None while closed)
    """

    provider_id: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    success_rate: float = 1.0
    last_failure: datetime | None = None
    last_success: datetime | None = None
    opened_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _refresh_rate(self) -> None:
        self.success_rate = self.success_count / (self.success_count + self.failure_count)


@dataclass
class _Breaker:
    state: CircuitBreakerState
    lock: threading.Lock = field(default_factory=threading.Lock)


class CircuitBreakerRegistry:
    """Keyed store of circuit breakers, one per provider.

    Breakers are created lazily on first use. Each breaker carries its own
    lock; transitions are the only mutation path.
    """

    # Providers below this success rate are reported as degraded
    DEGRADED_SUCCESS_RATE = 0.8

    def __init__(
        self,
        threshold: float = 0.5,
        half_open_after: timedelta | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize breaker registry.

        Args:
            threshold: Success rate boundary for opening/closing (0.0-1.0)
            half_open_after: Let an OPEN breaker admit a probe after this long
            clock: Time source returning aware datetimes (injectable for tests)
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be 0.0-1.0, got {threshold}")

        self._threshold = threshold
        self._half_open_after = half_open_after
        self._clock = clock or (lambda: datetime.now(UTC))
        self._breakers: dict[str, _Breaker] = {}

        log.info(
            "circuit_breakers.initialized",
            threshold=threshold,
            half_open_after_seconds=(
                half_open_after.total_seconds() if half_open_after else None
            ),
        )

    @property
    def threshold(self) -> float:
        return self._threshold

    def register(self, provider_id: str) -> None:
        """Create a closed breaker for a provider if it has none yet."""
        self._breaker(provider_id)

    def is_open(self, provider_id: str) -> bool:
        breaker = self._breakers.get(provider_id)
        if breaker is None:
            return False
        with breaker.lock:
            return breaker.state.is_open

    def is_available(self, provider_id: str) -> bool:
        """Whether the executor may attempt this provider now.

        Closed breakers are available. Open breakers are skipped unless
        half-open probing is configured and the breaker has been open for
        at least ``half_open_after``.
        """
        breaker = self._breakers.get(provider_id)
        if breaker is None:
            return True

        with breaker.lock:
            state = breaker.state
            if not state.is_open:
                return True
            if self._half_open_after is None or state.opened_at is None:
                return False
            probe_due = self._clock() - state.opened_at >= self._half_open_after

        if probe_due:
            log.info("circuit_breaker.half_open_probe", provider=provider_id)
        return probe_due

    def record_success(self, provider_id: str) -> CircuitBreakerState:
        breaker = self._breaker(provider_id)
        closed = False

        with breaker.lock:
            state = breaker.state
            state.success_count += 1
            state.last_success = self._clock()
            state._refresh_rate()

            if state.is_open and state.success_rate > self._threshold:
                state.state = CircuitState.CLOSED
                state.opened_at = None
                closed = True

            snapshot = replace(state)

        if closed:
            set_circuit_state(provider_id, is_open=False)
            log.info(
                "circuit_breaker.closed",
                provider=provider_id,
                success_rate=round(snapshot.success_rate, 3),
            )
        return snapshot

    def record_failure(self, provider_id: str) -> CircuitBreakerState:
        breaker = self._breaker(provider_id)
        opened = False

        with breaker.lock:
            state = breaker.state
            state.failure_count += 1
            state.last_failure = self._clock()
            state._refresh_rate()

            if not state.is_open and state.success_rate < self._threshold:
                state.state = CircuitState.OPEN
                state.opened_at = state.last_failure
                opened = True
            elif state.is_open and self._half_open_after is not None:
                # Failed probe: restart the wait before the next one
                state.opened_at = state.last_failure

            snapshot = replace(state)

        if opened:
            set_circuit_state(provider_id, is_open=True)
            log.warning(
                "circuit_breaker.opened",
                provider=provider_id,
                success_rate=round(snapshot.success_rate, 3),
                failure_count=snapshot.failure_count,
                success_count=snapshot.success_count,
            )
        return snapshot

    def get_state(self, provider_id: str) -> CircuitBreakerState:
        """Copy of a provider's breaker state (a fresh closed state if unseen)."""
        breaker = self._breaker(provider_id)
        with breaker.lock:
            return replace(breaker.state)

    def snapshot(self) -> list[CircuitBreakerState]:
        states = []
        for breaker in list(self._breakers.values()):
            with breaker.lock:
                states.append(replace(breaker.state))
        return states

    def health_report(self) -> dict[str, Any]:
        """Summarize provider health for dashboards.

        Returns:
            Dict with:
            - overall_health: healthy / degraded / critical
            - providers: list of per-provider status dicts
            - recommendations: operator-facing hints
        """
        statuses = []
        for state in self.snapshot():
            if state.is_open:
                status = ProviderHealth.CIRCUIT_OPEN
            elif state.success_rate < self.DEGRADED_SUCCESS_RATE:
                status = ProviderHealth.DEGRADED
            else:
                status = ProviderHealth.HEALTHY
            statuses.append(
                {
                    "provider": state.provider_id,
                    "status": status,
                    "success_rate": round(state.success_rate, 3),
                    "last_failure": state.last_failure,
                }
            )

        healthy = sum(1 for s in statuses if s["status"] == ProviderHealth.HEALTHY)
        total = len(statuses)

        overall = OverallHealth.HEALTHY
        if healthy < total * 0.5:
            overall = OverallHealth.CRITICAL
        elif healthy < total * 0.8:
            overall = OverallHealth.DEGRADED

        recommendations: list[str] = []
        if overall == OverallHealth.CRITICAL:
            recommendations.append("System health is critical - multiple providers failing")
            recommendations.append("Consider reducing request volume or checking provider status")

        open_circuits = [s["provider"] for s in statuses if s["status"] == ProviderHealth.CIRCUIT_OPEN]
        if open_circuits:
            recommendations.append(f"Circuit breakers open for: {', '.join(open_circuits)}")

        degraded = [s["provider"] for s in statuses if s["status"] == ProviderHealth.DEGRADED]
        if degraded:
            recommendations.append(f"Degraded performance: {', '.join(degraded)}")

        if not recommendations:
            recommendations.append("All systems operating normally")

        return {
            "overall_health": overall,
            "providers": statuses,
            "recommendations": recommendations,
        }

    def reset(self) -> None:
        """Drop all breaker state. Used for testing."""
        self._breakers.clear()
        log.debug("circuit_breakers.reset")

    def _breaker(self, provider_id: str) -> _Breaker:
        breaker = self._breakers.get(provider_id)
        if breaker is None:
            breaker = self._breakers.setdefault(
                provider_id, _Breaker(CircuitBreakerState(provider_id))
            )
        return breaker
