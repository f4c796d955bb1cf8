"""
Structured logging for rollout-spine.

Thin configuration layer over structlog. Library modules log through
``get_logger(__name__)`` with event-style names and keyword context::

    logger.info("accessory.ready", accessory="db", attempts=3)

The CLI calls ``configure_logging()`` once at startup. Output is a coloured
console renderer on a TTY and JSON lines otherwise (CI, log shipping).

Configuration is read from environment variables when not passed explicitly:

- ROLLOUT_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
- ROLLOUT_LOG_FORMAT: json | console (default: auto-detect from TTY)

Tags:
    logging, structlog, observability, json-logging
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "rollout"
_configured = False


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str | None = None,
    json_format: bool | None = None,
    service: str = "rollout",
    force: bool = False,
) -> None:
    """Configure structured logging for the application.

    Subsequent calls are no-ops unless ``force=True``.

    Args:
        level: Log level (overrides ROLLOUT_LOG_LEVEL)
        json_format: True for JSON, False for console, None for auto
        service: Service name included in every event
        force: Reconfigure even if already configured
    """
    global _SERVICE_NAME, _configured

    if _configured and not force:
        return
    _SERVICE_NAME = service

    log_level = (level or os.environ.get("ROLLOUT_LOG_LEVEL", "INFO")).upper()
    if json_format is None:
        env_format = os.environ.get("ROLLOUT_LOG_FORMAT", "").lower()
        if env_format in ("json", "console"):
            json_format = env_format == "json"
        else:
            json_format = not sys.stderr.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level)),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(run_id="abc123", target="shop"):
            logger.info("rollout.started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


__all__ = [
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "is_configured",
    "unbind_context",
]
