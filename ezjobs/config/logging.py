"""
Structured logging for the API process and the workers.

Two kinds of loggers write through one renderer:

- structlog loggers from ``get_logger``, used where a logger is bound to a
  request or job (``get_logger(__name__).bind(job_id=...)``);
- stdlib ``logging.getLogger(__name__)`` loggers, whose ``extra={...}``
  fields are lifted into the event.

Debug mode renders for the console; otherwise one JSON object per line.
"""

import logging
import sys
from typing import Any

import structlog

from .settings import Settings, settings as default_settings


def _shared_processors(settings: Settings) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]
    if settings.debug:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            )
        )
    return processors


def _renderer(settings: Settings) -> Any:
    if settings.debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Settings | None = None) -> None:
    settings = settings or default_settings
    level = getattr(logging, settings.log_level)
    shared = _shared_processors(settings)
    renderer = _renderer(settings)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                *shared,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.ExtraAdder(),
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )
    # No-op when the root logger already has handlers (e.g. under pytest).
    logging.basicConfig(handlers=[handler], level=level)

    structlog.configure(
        processors=[*shared, structlog.processors.format_exc_info, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Replace the context bound to every log line of the current request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)
