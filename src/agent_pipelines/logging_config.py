"""Logging configuration for agent-pipelines.

Console output goes to stderr so stdout stays clean for JSON responses that
shell drivers parse. An optional file handler always records DEBUG.

Usage:
    >>> setup_logging(verbose=True)
    >>> logger = logging.getLogger(__name__)
    >>> logger.info("Iteration %d complete", 3)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional


CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    quiet: bool = False,
) -> logging.Logger:
    """Configure the package logger.

    Args:
        verbose: If True, set DEBUG level; otherwise INFO level
        log_file: Optional path to a log file for persistent logging
        quiet: If True, suppress all output except errors

    Returns:
        The configured `agent_pipelines` logger
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    handlers.append(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        handlers.append(file_handler)

    package_logger = logging.getLogger("agent_pipelines")
    package_logger.setLevel(logging.DEBUG if log_file else level)

    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        package_logger.addHandler(handler)

    return package_logger

