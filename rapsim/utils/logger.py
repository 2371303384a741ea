"""Logging configuration for the market simulation."""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional

DEFAULT_LOGGER_NAME = "rapsim"


def setup_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_dir: str = "logs"
) -> logging.Logger:
    """
    Set up a logger with console and optional file output.

    Module loggers (``rapsim.agents.listing`` etc.) propagate to the
    ``rapsim`` logger, so configuring it once covers the whole package.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_to_file: Whether to log to file
        log_dir: Directory for log files

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        '%(levelname)s - %(message)s'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(simple_formatter)
    logger.addHandler(console_handler)

    if log_to_file:
        log_path = Path(log_dir)
        log_path.mkdir(exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_path / f"market_{timestamp}.log"

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

        logger.info(f"Logging to file: {log_file}")

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return ``name`` (default ``rapsim``); loggers outside the package get a console handler."""
    if name is None:
        name = DEFAULT_LOGGER_NAME

    logger = logging.getLogger(name)

    if not logger.handlers and not name.startswith(DEFAULT_LOGGER_NAME + "."):
        return setup_logger(name, log_to_file=False)

    return logger
