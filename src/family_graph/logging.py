"""Structlog-based logging for the family graph engine.

Library modules log through ``structlog.get_logger(__name__)`` with dotted
event names; only the CLI prints to the console.
"""
from __future__ import annotations

from typing import Literal

import logging
import sys
import structlog

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: LogLevel = "INFO", cache: bool = True) -> None:
    """JSON log lines on stderr, filtered at ``level``.

    Pass ``cache=False`` when stderr may be swapped between calls (CLI test
    runners) so loggers do not keep a closed stream.
    """
    numeric = getattr(logging, level, logging.INFO)
    logging.basicConfig(format="%(message)s", level=numeric)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=cache,
    )
