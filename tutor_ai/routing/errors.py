"""Exceptions raised out of the routing core.

Only ProvidersExhaustedError is expected in normal operation; everything
else (ambiguous prompts, infeasible constraints, exhausted budgets) is
absorbed by a degraded-but-usable result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tutor_ai.routing.types import ExecutionOutcome


class RoutingError(Exception):
    """Base exception for all routing core failures."""


class UnknownProviderError(RoutingError, KeyError):
    """Provider is not present in the capability registry."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(provider_id)
        self.provider_id = provider_id

    def __str__(self) -> str:
        return f"Unknown provider: {self.provider_id}"


class ProvidersExhaustedError(RoutingError):
    """Every provider failed in every retry round.

    The last underlying provider error is available as ``last_error`` and
    as ``__cause__``; ``outcome`` is the failed ExecutionOutcome.
    """

    def __init__(
        self,
        message: str,
        *,
        outcome: ExecutionOutcome,
        last_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.outcome = outcome
        self.last_error = last_error


class ExecutionCancelledError(RoutingError):
    """The caller's cancel event was set while the executor was retrying."""
