"""
Logging configuration for QueryChat.

Everything goes through loguru. The HTTP stack (httpx, httpcore) logs via the
standard library, so those records are forwarded into loguru and capped at
WARNING unless the client runs at DEBUG.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{line} | {message}"

HTTP_LOGGERS = ("httpx", "httpcore")


class _StdlibForwarder(logging.Handler):
    """Re-emit standard library records through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.bind(name=record.name).opt(exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(
    level: str = "INFO",
    log_file: str | Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional)
        rotation: Log file rotation size
        retention: Log file retention period
    """
    logger.remove()
    logger.configure(extra={"name": "querychat"})

    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level=level,
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            encoding="utf-8",
        )

    http_level = logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING
    for name in HTTP_LOGGERS:
        http_logger = logging.getLogger(name)
        http_logger.handlers = [_StdlibForwarder()]
        http_logger.setLevel(http_level)
        http_logger.propagate = False


def get_logger(name: str | None = None) -> Logger:
    """Logger tagged with the calling module's name."""
    return logger.bind(name=name or "querychat")
