"""Logging setup for context-ledger.

Normal commands log to stderr (or a rotating file). Hook ingestion runs
inside the agent's hook process where stdout/stderr belong to the agent, so
its lifecycle messages go to a dedicated rotating ``hooks.log``.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from context_ledger.constants import (
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_MAX_BYTES,
    HOOKS_LOG_FILENAME,
    HOOKS_LOGGER_NAME,
    LOG_FORMAT,
    LOG_FORMAT_DEBUG,
)

PACKAGE_LOGGER_NAME = "context_ledger"


def configure_logging(
    log_level: str = "WARNING",
    log_file: Path | None = None,
    max_bytes: int = DEFAULT_LOG_MAX_BYTES,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
) -> None:
    """Configure the package logger.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional file for a RotatingFileHandler; stderr otherwise.
        max_bytes: Rotation threshold for the log file.
        backup_count: Number of rotated files to keep.
    """
    level = getattr(logging, log_level.upper(), logging.WARNING)
    log_format = LOG_FORMAT_DEBUG if level == logging.DEBUG else LOG_FORMAT

    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    handler: logging.Handler
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(log_format))
    package_logger.addHandler(handler)
    package_logger.propagate = False


def configure_hooks_logger(
    data_dir: Path,
    max_bytes: int = DEFAULT_LOG_MAX_BYTES,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
) -> logging.Logger:
    """Attach a rotating hooks.log handler to the hooks lifecycle logger.

    The hooks logger does not propagate, so nothing reaches the agent's
    terminal. Calling this twice for the same directory is a no-op.
    """
    hooks_logger = logging.getLogger(HOOKS_LOGGER_NAME)
    hooks_logger.setLevel(logging.INFO)
    hooks_logger.propagate = False

    log_path = (data_dir / HOOKS_LOG_FILENAME).resolve()
    for existing in hooks_logger.handlers:
        if isinstance(existing, RotatingFileHandler) and Path(existing.baseFilename) == log_path:
            return hooks_logger

    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError:
        handler = logging.NullHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    hooks_logger.addHandler(handler)
    return hooks_logger
