"""Structured logging for the telemetry layer.

structlog processor pipeline bridged onto stdlib logging, so both
`structlog.get_logger()` and `logging.getLogger()` produce structured output
through one stderr handler.

    FS_TELEMETRY_LOG_FORMAT=json (default) | console
    FS_TELEMETRY_LOG_LEVEL=INFO (default)
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from config import TelemetryConfig

_handler: logging.Handler | None = None


def setup_logging(config: TelemetryConfig) -> None:
    """Configure structlog and attach a single stderr handler to the root logger.

    Safe to call again after a config reload; the previous handler is replaced.
    """
    global _handler

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.log_format == "console":
        renderer: Any = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(config.log_level)
    _handler = handler


def get_logger(name: str | None = None, **initial_values: Any) -> Any:
    """Return a structlog logger bound to the stdlib logger `name`.

    Output always goes through stdlib logging, so nothing is printed before the
    host calls `setup_logging` (or configures logging its own way).
    """
    return structlog.wrap_logger(
        logging.getLogger(name),
        wrapper_class=structlog.stdlib.BoundLogger,
        **initial_values,
    )
