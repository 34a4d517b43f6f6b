"""
Logging setup for applications using sqlfacade.

The library itself only creates module loggers under ``sqlfacade``;
call ``setup_logging`` from the application to route them somewhere.
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

logger = logging.getLogger("sqlfacade")

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ["sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncpg"]


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
    max_log_size: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
) -> None:
    """
    Set up logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format for log messages
        log_file: Path to log file; console only when omitted
        max_log_size: Maximum size of each log file in bytes (default: 10MB)
        backup_count: Number of backup logs to keep (default: 5)
    """
    # Convert string log level to logging constant
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    if log_format is None:
        log_format = DEFAULT_LOG_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear any existing handlers
    if root_logger.handlers:
        root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=backup_count
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(file_handler)

    logger.setLevel(numeric_level)

    for module in NOISY_LOGGERS:
        logging.getLogger(module).setLevel(logging.WARNING)

    logger.info(f"Logging initialized at level {log_level}")
    if log_file:
        logger.info(f"Log file: {log_file}")


def setup_logging_from_config(config) -> None:
    """Apply the ``logging`` section of a Config."""
    setup_logging(
        log_level=config.get("logging.level", "INFO") or "INFO",
        log_format=config.get("logging.format"),
        log_file=config.get("logging.file") or None,
    )
