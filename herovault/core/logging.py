"""Structured logging setup with structlog.

Provides JSON or console logging for the reconciliation scripts.
Automatically binds run_id, pipeline_stage and source from context.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog

# Context variables for automatic log enrichment
run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
pipeline_stage_var: ContextVar[str | None] = ContextVar("pipeline_stage", default=None)
source_var: ContextVar[str | None] = ContextVar("source", default=None)


def add_context_vars(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Processor that adds contextvars to every log entry."""
    if (run_id := run_id_var.get()) is not None:
        event_dict.setdefault("run_id", run_id)
    if (stage := pipeline_stage_var.get()) is not None:
        event_dict.setdefault("pipeline_stage", stage)
    if (source := source_var.get()) is not None:
        event_dict.setdefault("source", source)
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """Configure structlog for the scripts.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Output format - "json" for machine-read logs, "console" for operators.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_vars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # stdout is reserved for the run report
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Quiet noisy third-party loggers
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Bound structlog logger with automatic context enrichment.
    """
    return structlog.get_logger(name)
