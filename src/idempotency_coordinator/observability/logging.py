"""Structured logging for the idempotency coordinator.

Events use dotted names (``idempotency.replayed``, ``idempotency.race_lost``,
``cleanup.completed``) and carry their details as key/value pairs.

While an eligible request is processed the middleware binds its
(owner, key) pair to the context once. ``render_request_context`` turns that
binding into ``owner`` and ``key`` fields on every event, so lines emitted by
the storage adapters, which never receive the pair, can still be traced
back to the request.

Examples:
    Configure logging from the deployment configuration::

        from idempotency_coordinator.config import IdempotencyConfig
        from idempotency_coordinator.observability.logging import (
            configure_logging_from_config,
        )

        configure_logging_from_config(IdempotencyConfig.from_env())

    Output (JSON) of a store failure during a request::

        {
            "event": "idempotency.store_unavailable",
            "operation": "lookup",
            "owner": "user-42",
            "key": "deposit-001",
            "level": "warning",
            "timestamp": "2024-01-01T00:00:00.000000Z"
        }
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from idempotency_coordinator.config import IdempotencyConfig

# Context variable name -> rendered field name
_REQUEST_CONTEXT_FIELDS = {
    "idempotency_owner": "owner",
    "idempotency_key": "key",
}


def render_request_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Render the bound request context as ``owner``/``key`` fields.

    Values passed explicitly to the log call win over the bound ones.
    """
    for bound_name, field in _REQUEST_CONTEXT_FIELDS.items():
        value = event_dict.pop(bound_name, None)
        if value is not None:
            event_dict.setdefault(field, value)
    return event_dict


def build_processors(json_output: bool, colors: bool = False) -> list[Processor]:
    """Return the processor chain, ending in a JSON or console renderer."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        render_request_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=colors))

    return processors


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog (and the stdlib root logger used by servers).

    Call once at application startup.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Emit JSON lines if True, console format otherwise
        stream: Destination of log lines (defaults to stdout)

    Raises:
        ValueError: If ``level`` is not a known level name.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level!r}")

    target = stream or sys.stdout
    logging.basicConfig(format="%(message)s", stream=target, level=log_level)

    structlog.configure(
        processors=build_processors(json_output, colors=target.isatty()),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=target),
        cache_logger_on_first_use=True,
    )


def configure_logging_from_config(config: IdempotencyConfig) -> None:
    configure_logging(level=config.log_level, json_output=config.log_json)


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def bind_request_context(owner: str, key: str) -> None:
    """Bind the (owner, key) pair to every log line of the current request."""
    structlog.contextvars.bind_contextvars(idempotency_owner=owner, idempotency_key=key)


def clear_request_context() -> None:
    structlog.contextvars.unbind_contextvars(*_REQUEST_CONTEXT_FIELDS)
