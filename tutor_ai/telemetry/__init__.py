"""Telemetry package for observability.

This package contains:
- Structured logging with request/task context (logging.py)
- Prometheus collectors for provider attempts, circuits and spend (prometheus.py)
"""

from __future__ import annotations

from tutor_ai.telemetry.logging import (
    bind_request_context,
    bind_task_context,
    clear_context,
    configure_logging,
    new_request_id,
    unbind_routing_context,
)

__all__ = [
    "bind_request_context",
    "bind_task_context",
    "clear_context",
    "configure_logging",
    "new_request_id",
    "unbind_routing_context",
]
