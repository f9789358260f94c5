"""Fallback executor for resilient provider calls with retry rounds.

The FallbackExecutor runs a request against an ordered provider chain
(primary first, then fallbacks). This provides resilience against:
- Provider unavailability and errors
- Timeouts (each call is bounded by provider_timeout_seconds)
- Providers whose circuit breaker is open (skipped)

Execution strategy:
1. Try each available provider in chain order
2. First success ends the call
3. If the whole chain fails, back off and start another round
4. After max_retries rounds, raise ProvidersExhaustedError

Every attempt, successful or not, is recorded on the PerformanceTracker,
the CircuitBreakerRegistry and the Prometheus collectors.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from tutor_ai.routing.errors import ExecutionCancelledError, ProvidersExhaustedError
from tutor_ai.routing.metrics import PerformanceSample
from tutor_ai.routing.types import ExecutionOutcome, TaskFn, TaskType
from tutor_ai.telemetry.prometheus import record_provider_attempt

if TYPE_CHECKING:
    from tutor_ai.routing.circuit_breaker import CircuitBreakerRegistry
    from tutor_ai.routing.metrics import PerformanceTracker

log = structlog.get_logger(__name__)


class _RoundFailed(Exception):
    """Every provider in the chain failed or was skipped in one round."""

    def __init__(self, last_error: BaseException | None) -> None:
        super().__init__(str(last_error) if last_error else "no provider available")
        self.last_error = last_error


class FallbackExecutor:
    """Executes provider calls across a fallback chain with retry rounds.

    Stateless apart from the shared tracker and breaker registry, so one
    instance can serve any number of concurrent requests.
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        tracker: PerformanceTracker,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 1.0,
        provider_timeout_seconds: float = 30.0,
    ) -> None:
        """Initialize fallback executor.

        Args:
            breakers: Circuit breaker registry (read and updated per attempt)
            tracker: Performance tracker (updated per attempt)
            max_retries: Number of rounds over the whole chain
            base_delay_seconds: Backoff unit; round n waits n * base delay
            provider_timeout_seconds: Upper bound on a single provider call
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if base_delay_seconds < 0:
            raise ValueError("base_delay_seconds cannot be negative")
        if provider_timeout_seconds <= 0:
            raise ValueError("provider_timeout_seconds must be positive")

        self._breakers = breakers
        self._tracker = tracker
        self._max_retries = max_retries
        self._base_delay = base_delay_seconds
        self._timeout = provider_timeout_seconds

        log.info(
            "fallback_executor.initialized",
            max_retries=max_retries,
            base_delay_seconds=base_delay_seconds,
            provider_timeout_seconds=provider_timeout_seconds,
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
        """Execute a request with automatic fallback and retry rounds.

        Args:
            primary: Provider to try first
            fallback_chain: Providers to try next, in order
            task_fn: Async provider call, raises on failure
            task_type: Task type the outcomes are recorded under
            cancel_event: Set to abandon the call between attempts

        Returns:
            Successful ExecutionOutcome

        Raises:
            ProvidersExhaustedError: If every provider failed in every round
            ExecutionCancelledError: If cancel_event was set
        """
        chain = list(dict.fromkeys([primary, *fallback_chain]))
        failed: list[str] = []
        last_tried: list[str] = []
        errors: list[BaseException] = []

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_incrementing(start=self._base_delay, increment=self._base_delay),
            retry=retry_if_exception_type(_RoundFailed),
            sleep=self._sleeper(cancel_event),
            before_sleep=self._log_backoff,
            reraise=True,
        )

        log.info(
            "fallback_executor.started",
            task_type=str(task_type),
            chain=chain,
            max_retries=self._max_retries,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    outcome = await self._run_round(
                        chain,
                        task_fn,
                        task_type=task_type,
                        round_number=attempt.retry_state.attempt_number,
                        cancel_event=cancel_event,
                        failed=failed,
                        last_tried=last_tried,
                        errors=errors,
                    )
        except _RoundFailed as exc:
            last_error = exc.last_error
            outcome = ExecutionOutcome(
                provider_used=last_tried[-1] if last_tried else None,
                attempts_count=self._max_retries,
                fallbacks_used=tuple(dict.fromkeys(failed)),
                success=False,
                error=str(last_error) if last_error else "No provider available (all circuits open)",
            )
            log.error(
                "fallback_executor.all_providers_failed",
                task_type=str(task_type),
                chain=chain,
                rounds=self._max_retries,
                error_type=type(last_error).__name__ if last_error else None,
                error_message=outcome.error,
            )
            raise ProvidersExhaustedError(
                f"All providers failed after {self._max_retries} rounds. "
                f"Last error: {outcome.error}",
                outcome=outcome,
                last_error=last_error,
            ) from last_error

        return outcome

    async def _run_round(
        self,
        chain: list[str],
        task_fn: TaskFn,
        *,
        task_type: TaskType | str,
        round_number: int,
        cancel_event: asyncio.Event | None,
        failed: list[str],
        last_tried: list[str],
        errors: list[BaseException],
    ) -> ExecutionOutcome:

        for provider in chain:
            if cancel_event is not None and cancel_event.is_set():
                log.info("fallback_executor.cancelled", provider=provider, round=round_number)
                raise ExecutionCancelledError("Execution cancelled by caller")

            if not self._breakers.is_available(provider):
                log.info(
                    "fallback_executor.provider_skipped",
                    provider=provider,
                    round=round_number,
                    reason="circuit_open",
                )
                continue

            last_tried.append(provider)
            log.info("fallback_executor.attempting_provider", provider=provider, round=round_number)
            started = time.perf_counter()

            try:
                response = await asyncio.wait_for(task_fn(provider), timeout=self._timeout)
            except Exception as exc:
                elapsed = time.perf_counter() - started
                errors.append(exc)
                failed.append(provider)
                self._record(
                    provider,
                    task_type,
                    success=False,
                    elapsed_seconds=elapsed,
                    status="timeout" if isinstance(exc, TimeoutError) else "error",
                )
                log.warning(
                    "fallback_executor.provider_failed",
                    provider=provider,
                    round=round_number,
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                    latency_ms=round(elapsed * 1000, 1),
                )
                continue

            elapsed = time.perf_counter() - started
            self._record(
                provider,
                task_type,
                success=True,
                elapsed_seconds=elapsed,
                status="success",
                cost=response.cost,
                input_tokens=response.token_usage.input_tokens,
                output_tokens=response.token_usage.output_tokens,
            )

            fallbacks_used = tuple(dict.fromkeys(failed))
            log.info(
                "fallback_executor.provider_succeeded",
                provider=provider,
                round=round_number,
                fallback_occurred=provider != chain[0],
                fallbacks_used=list(fallbacks_used),
                cost=response.cost,
            )
            return ExecutionOutcome(
                provider_used=provider,
                attempts_count=round_number,
                fallbacks_used=fallbacks_used,
                success=True,
                content=response.content,
                token_usage=response.token_usage,
                actual_cost=response.cost,
                latency_ms=elapsed * 1000,
            )

        # Later rounds may skip every provider; keep the last real error
        raise _RoundFailed(errors[-1] if errors else None)

    def _record(
        self,
        provider: str,
        task_type: TaskType | str,
        *,
        success: bool,
        elapsed_seconds: float,
        status: str,
        cost: float = 0.0,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        self._tracker.record(
            provider,
            str(task_type),
            PerformanceSample(success=success, latency_ms=elapsed_seconds * 1000, cost=cost),
        )
        if success:
            self._breakers.record_success(provider)
        else:
            self._breakers.record_failure(provider)
        record_provider_attempt(
            provider,
            status,
            elapsed_seconds,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    @staticmethod
    def _sleeper(cancel_event: asyncio.Event | None) -> Callable[[float], Awaitable[None]]:
        async def sleep(seconds: float) -> None:
            if cancel_event is None:
                await asyncio.sleep(seconds)
                return
            if cancel_event.is_set():
                raise ExecutionCancelledError("Execution cancelled by caller")
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
            except TimeoutError:
                return
            log.info("fallback_executor.cancelled_during_backoff")
            raise ExecutionCancelledError("Execution cancelled by caller")

        return sleep

    @staticmethod
    def _log_backoff(retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        log.warning(
            "fallback_executor.round_failed",
            round=retry_state.attempt_number,
            backoff_seconds=wait,
        )
