"""
Centralised logging configuration - powered by **loguru**.

Usage (entry-points - scripts, CLI)::

    from infrastructure.log import setup_logging
    setup_logging()              # defaults: INFO, stderr
    setup_logging("DEBUG")       # more verbose

Usage (components)::

    from infrastructure.log import get_logger
    orchestrator = AgentOrchestrator(..., logger=get_logger("orchestrator"))

Design:
    - Core components never reach for a global logger. They take a
      ``logger`` argument and default to ``NullLogger``, so embedding the
      router in another application produces no output unless asked.
    - ``get_logger`` hands out loguru loggers bound to a component name.
    - A single ``setup_logging()`` call at the entry-point configures
      format, level, and optionally intercepts stdlib ``logging`` so
      httpx / openai / langchain also route through loguru.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from loguru import logger


#  Format strings

_FMT_FULL = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[component]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


#  Intercept handler

class _InterceptHandler(logging.Handler):
    """Route stdlib ``logging`` records into **loguru**."""

    def emit(self, record: logging.LogRecord) -> None:
        # Map stdlib level to loguru level
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller frame that originated the log call
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


#  No-op logger

class NullLogger:
    """Accepts the loguru call surface and discards everything."""

    def _discard(self, *args: Any, **kwargs: Any) -> None:
        return None

    trace = debug = info = success = warning = error = critical = exception = log = _discard

    def bind(self, **kwargs: Any) -> "NullLogger":
        return self

    def opt(self, *args: Any, **kwargs: Any) -> "NullLogger":
        return self


NULL_LOGGER = NullLogger()


#  Public API

def get_logger(component: str, enabled: bool = True):
    """
    Return a loguru logger bound to ``component``, or ``NULL_LOGGER``.

    Args:
        component: Name shown in the ``component`` column of the log format.
        enabled: When False the returned logger discards everything.
    """
    if not enabled:
        return NULL_LOGGER
    return logger.bind(component=component)


def setup_logging(
    level: str = "INFO",
    *,
    intercept_stdlib: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure loguru for the current process.

    Call this **once** at your entry-point (script ``main()`` or CLI).

    Args:
        level: Minimum log level (``DEBUG``, ``INFO``, ``WARNING``, …).
        intercept_stdlib: Route stdlib ``logging`` through loguru so
                         third-party libraries also emit structured logs.
        log_file: Optional path to a rotating log file.
    """
    # Remove default loguru handler (id 0)
    logger.remove()
    logger.configure(extra={"component": "-"})

    # Primary sink: stderr
    logger.add(
        sys.stderr,
        format=_FMT_FULL,
        level=level.upper(),
        colorize=True,
        backtrace=True,
        diagnose=False,  # keep tracebacks concise in production
    )

    # Optional file sink
    if log_file:
        logger.add(
            log_file,
            format=_FMT_FULL,
            level=level.upper(),
            rotation="10 MB",
            retention="7 days",
            compression="gz",
        )

    # Intercept stdlib logging
    if intercept_stdlib:
        logging.basicConfig(
            handlers=[_InterceptHandler()], level=0, force=True)

    logger.debug("Loguru configured - level={}", level)
