"""Structured logging setup."""

from __future__ import annotations

import logging

import structlog

from knowledge_engine.config import Settings, get_settings

_LOG_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog for the process.

    Hosts embedding the engine call this once at startup; the engine itself
    only ever calls `structlog.get_logger()`.
    """
    settings = settings or get_settings()
    level = _LOG_LEVEL_MAP.get(settings.log_level.lower(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
