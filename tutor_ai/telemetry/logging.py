"""Structured logging configuration for routing observability.

Configures structlog with JSON output in production and a readable console
renderer in development.

Features:
- JSON-formatted logs in production (human-readable in dev)
- Request ID and task type propagated through contextvars
- ISO8601 timestamps with timezone
- Stack traces for exceptions

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "event": "model_router.provider_selected",
        "logger": "tutor_ai.routing.router",
        "request_id": "req_789...",
        "task_type": "synergy-analysis",
        "provider": "gpt-4o"
    }
"""

from __future__ import annotations

import logging
import sys
import uuid

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(getattr(logging, log_level.upper()))

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


def bind_request_context(request_id: str | None = None) -> str:
    """Bind a request ID to the log context for this routing request.

    Args:
        request_id: Existing request identifier. Generated when omitted.

    Returns:
        The bound request ID
    """
    request_id = request_id or new_request_id()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id


def bind_task_context(task_type: str, complexity: str | None = None) -> None:
    """Bind classification results to logs for the rest of the request.

    Args:
        task_type: Classified task type
        complexity: Classified complexity tier
    """
    if complexity is None:
        structlog.contextvars.bind_contextvars(task_type=task_type)
    else:
        structlog.contextvars.bind_contextvars(task_type=task_type, complexity=complexity)


def unbind_routing_context() -> None:
    """Drop request and task keys bound for one routed request."""
    structlog.contextvars.unbind_contextvars("request_id", "task_type", "complexity")


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
