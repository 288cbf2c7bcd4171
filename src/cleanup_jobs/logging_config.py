"""structlog setup shared by every job entry point."""

from __future__ import annotations

import logging

import structlog


def configure_logging(app_env: str = "development", log_level: str = "INFO") -> None:
    """Configure structlog for a single job process.

    Development runs get the colourised console renderer; anything else
    emits one JSON object per line so the scheduler's log sink can parse it.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    if app_env == "development":
        renderers = [structlog.dev.ConsoleRenderer()]
    else:
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderers,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
