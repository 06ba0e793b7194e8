"""Structured logging setup using structlog.

The same shared processor chain (context vars, log level, timestamps, stack
info) feeds either a coloured ConsoleRenderer for local development or a
JSONRenderer for production.  The renderer is chosen from the ``APP_ENV``
environment variable, or forced via ``json_output``.

Standard-library ``logging`` is routed through the same formatter so that
uvicorn, httpx and chromadb log lines look identical to ours.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output.  When False, JSON is used only when
                     ``APP_ENV`` is ``production``.

    Returns:
        A configured structlog BoundLogger.
    """
    app_env = os.environ.get("APP_ENV", "development")
    use_json = json_output or app_env == "production"

    # Shared processor chain. These run regardless of the output format;
    # contextvars first so request and job bindings merge into every event.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    # The renderer is the only processor that differs between environments.
    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            renderer,
        ],
        # Drops events below log_level before any processor runs.
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route stdlib logging through the same chain so third-party libraries
    # render identically.
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structlog logger, configuring defaults on first use."""
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)


def bind_job_context(logger: structlog.BoundLogger, job_id: str, queue: str, **extra: object) -> structlog.BoundLogger:
    """Return *logger* bound with the identifiers of the job being executed.

    Worker tasks call this once per claimed job so every event emitted while
    the job runs carries ``job_id`` and ``queue`` without repeating them.
    """
    return logger.bind(job_id=job_id, queue=queue, **extra)
