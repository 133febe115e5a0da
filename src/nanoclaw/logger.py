"""Structured logging for nanoclaw.

The module-level ``logger`` is configured at import from ``LOG_LEVEL`` so it
works before Settings exists. ``apply_log_level`` re-applies the level from
config once settings are loaded.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.dev.set_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def _level_number(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _setup_logging() -> structlog.stdlib.BoundLogger:
    level = _level_number(os.environ.get("LOG_LEVEL", "INFO"))

    # stdlib root logger does the level filtering for filter_by_level
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)

    structlog.configure(
        processors=[*_PROCESSORS, structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("nanoclaw")


logger = _setup_logging()


def apply_log_level(name: str) -> None:
    """Set the effective level. An explicit ``LOG_LEVEL`` env var wins."""
    if os.environ.get("LOG_LEVEL"):
        return
    logging.getLogger().setLevel(_level_number(name))


def _uncaught_exception_handler(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _uncaught_exception_handler
