"""
Structured logging for loanflow.

Every engine module logs through ``get_logger(__name__)`` with dotted event
names and keyword fields. ``configure_logging`` is called once by the CLI
(or by an embedding application); library code never configures logging.

Manifesto:
    A reconciliation run spends most of its time waiting on other systems.
    When it fails, the log is the only record of what each store showed on
    each attempt, so logs are:

    - **Structured:** JSON output for log aggregation
    - **Correlated:** ``entity_id`` and ``run`` bound per run via contextvars
    - **Flexible:** Console output for operators, JSON for unattended runs

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="loanflow")
            ↓
        structlog processor chain:
          1. TimeStamper(iso)
          2. merge_contextvars
          3. add_log_level / add_logger_name
          4. add_service_metadata
          5. ecs_compatible (JSON only)
          6. JSONRenderer | ConsoleRenderer

    Output (JSON format)::

        {
          "@timestamp": "2026-03-02T10:00:00Z",
          "log.level": "info",
          "service.name": "loanflow",
          "event": "driver.step.confirmed",
          "entity_id": "app-1",
          "to_state": "PENDING_REVIEW",
          "poll_attempts": 2
        }

Examples:
    >>> from loanflow.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("poll.attempt", entity_id="app-1", attempt=1)

Guardrails:
    - With no explicit format, a non-TTY stderr gets JSON
    - Logs always go to stderr; stdout carries command output

Tags:
    logging, structlog, observability, ecs, json-logging, loanflow

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


# set by configure_logging
_SERVICE_NAME = "loanflow"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Stamp ``service.name`` on every event."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _ecs_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename timestamp/level to their ECS field names."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "loanflow",
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Minimum level name, e.g. "INFO"
        json_format: Force JSON (True) or console (False). None picks JSON
            when stderr is not a terminal
        service: Value for the ``service.name`` field
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stderr.isatty()

    shared_processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        shared_processors.append(_ecs_compatible)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdout is reserved for command output (--json reports)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper()),
    )
    logging.getLogger().setLevel(getattr(logging, level.upper()))


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this thread.

    Example:
        bind_context(entity_id="app-1", run="review")
        logger.info("driver.step.start")  # Includes entity_id and run
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Drop keys previously bound with ``bind_context``."""
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Bind keys for the duration of a ``with`` block.

    Example:
        with LogContext(entity_id="app-1"):
            driver.run(...)
        # entity_id unbound here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "LogContext",
]
