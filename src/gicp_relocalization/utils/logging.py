"""
Logging Utilities

This module sets up logging for the project. Every module creates its logger
through ``setup_logger(__name__)``; the node entry point later applies the
configured level and optional log file to all of them with
``configure_package_logging``.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER_PREFIX = "gicp_relocalization"

_CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
_FILE_FORMAT = '%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _file_handler(log_file: str, level: int) -> logging.FileHandler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(log_file)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def setup_logger(name: str,
                 level: int = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path. If provided, logs will be written to this file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)
    # Handlers live on each module logger; the root logger would print twice
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        logger.addHandler(_file_handler(log_file, level))

    return logger


def resolve_level(level: Union[int, str]) -> int:
    """Map a level name such as ``"DEBUG"`` to its numeric value."""
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


def configure_package_logging(level: Union[int, str] = logging.INFO,
                              log_file: Optional[str] = None) -> None:
    """
    Apply a level (and optional log file) to every logger of the package.

    Module loggers are created at import time with the default level, so the
    configured level has to be pushed to them once the configuration is known.

    Args:
        level: Numeric level or level name
        log_file: Optional log file shared by all package loggers
    """
    numeric = resolve_level(level)
    shared_file_handler = _file_handler(log_file, numeric) if log_file else None

    names = [
        name for name in logging.root.manager.loggerDict
        if name == PACKAGE_LOGGER_PREFIX or name.startswith(PACKAGE_LOGGER_PREFIX + ".")
    ]
    for name in names:
        logger = logging.getLogger(name)
        if not logger.handlers:
            continue
        logger.setLevel(numeric)
        for handler in logger.handlers:
            handler.setLevel(numeric)
        if shared_file_handler is not None and not any(
            isinstance(h, logging.FileHandler) for h in logger.handlers
        ):
            logger.addHandler(shared_file_handler)
