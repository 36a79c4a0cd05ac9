"""Logging configuration for Sheen."""

import logging
import sys
from typing import TextIO

import structlog

from sheen.config import Config


def configure_logging(
    config: Config | None = None,
    level: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for Sheen.

    Args:
        config: Configuration to read level/format from (defaults apply when omitted)
        level: Explicit level override, e.g. "DEBUG" for verbose runs
        stream: Output stream, stderr by default
    """
    logging_cfg = (config or Config()).logging
    level_name = (level or logging_cfg.level).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if logging_cfg.format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


log = get_logger(__name__)
