"""
structlog configuration for long-running processes.

Library modules only call ``structlog.get_logger()``; entrypoints call
``configure_logging`` once at startup.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import structlog


def configure_logging(level: Optional[str] = None, json_output: bool = False):
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    renderer = (
        structlog.processors.JSONRenderer() if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
