"""Centralized logging configuration using Loguru for the application.

This module configures Loguru and installs an intercept handler so code
that uses the standard library ``logging`` (uvicorn, SQLAlchemy) is routed
through Loguru. The log level can be adjusted via the ``LOG_LEVEL``
environment variable or re-applied from settings with :func:`setup_logging`.
"""

import logging
import os
import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name} | {message}"


class InterceptHandler(logging.Handler):
    """Handler to route stdlib logging records into Loguru.

    This preserves caller information so Loguru logs reflect the originating
    module/line rather than the interception point.
    """

    def emit(
        self, record: logging.LogRecord
    ) -> None:  # pragma: no cover - simple routing
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # NOTE: Walk frames to skip logging internals and find original caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: str | None = None) -> None:
    """(Re)configure the Loguru sink and stdlib interception.

    Args:
        level: Log level name; defaults to the ``LOG_LEVEL`` environment
            variable or ``INFO``.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    # Remove any previously configured handlers to avoid duplicate logs
    logger.remove()
    logger.add(
        sys.stdout,
        level=level,
        format=LOG_FORMAT,
        backtrace=True,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=level, force=True)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False
        logging.getLogger(name).setLevel(level)

    # NOTE: SQLAlchemy logs every statement at INFO; use DATABASE_ECHO instead.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def mask_token(value: str | None) -> str:
    """Shorten a secret token for log output."""
    if not value:
        return "<none>"
    return f"{value[:8]}..."


setup_logging()

# Export the configured Loguru logger for application modules to import
# Usage: from tokenvault.core.logging import logger
