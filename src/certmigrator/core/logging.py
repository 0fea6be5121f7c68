"""
Loguru configuration for the migrator.

This module configures loguru with:
- Automatic run id in each log
- Configurable format and level from settings
- Redirection of standard library logs (boto3, redis) to loguru
"""

import logging
import sys
from typing import Any

from loguru import logger

from certmigrator.config import settings
from certmigrator.core.trace_context import run_id_context

# Libraries that log through the standard library
INTERCEPTED_LOGGERS = ["boto3", "botocore", "urllib3", "redis"]


def add_run_id(record: dict[str, Any]) -> bool:
    """
    Adds the run_id to the log record.

    Args:
        record: Loguru record

    Returns:
        True to indicate that the filter passed
    """
    run_id = run_id_context.get()
    record["extra"]["run_id"] = run_id if run_id else "N/A"
    return True


def configure_logger(level: str | None = None, sink: Any = None) -> None:
    """
    Configures loguru with application settings.

    This function:
    1. Removes default loguru handlers
    2. Adds handler to stderr with custom configuration

    Args:
        level: Overrides settings.log_level when given (e.g. from the CLI)
        sink: Destination stream (sys.stderr if None)
    """
    logger.remove()

    logger.add(
        sink=sink if sink is not None else sys.stderr,
        level=(level or settings.log_level).upper(),
        format=settings.log_format,
        filter=add_run_id,
        colorize=settings.log_colorize,
        serialize=False,
        backtrace=False,
        diagnose=False,
        enqueue=settings.logger_enqueue,
    )


# Configure logger when importing the module
configure_logger()


__all__ = ["logger", "InterceptHandler", "configure_logger"]


class InterceptHandler(logging.Handler):
    """
    Handler to redirect standard logging logs to loguru.

    Usage:
        import logging
        from certmigrator.core.logging import InterceptHandler

        logging.getLogger("botocore").handlers = [InterceptHandler()]
    """

    def emit(self, record: logging.LogRecord) -> None:
        """
        Redirects a standard logging record to loguru.

        Args:
            record: logging.LogRecord record
        """
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        loguru_logger = logger.opt(depth=6, exception=record.exc_info)
        loguru_logger.log(level, record.getMessage())


def intercept_standard_logging() -> None:
    """
    Configures redirection of standard logging to loguru.

    Intercepts logs from the storage client libraries listed in
    INTERCEPTED_LOGGERS. Their level is capped at WARNING so that
    per-request chatter does not drown the transfer log.
    """
    for logger_name in INTERCEPTED_LOGGERS:
        logging_logger = logging.getLogger(logger_name)
        logging_logger.handlers = [InterceptHandler()]
        logging_logger.setLevel(logging.WARNING)
        logging_logger.propagate = False
