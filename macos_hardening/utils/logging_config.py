"""
Logging configuration for the command line tool.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "macos_hardening"


def setup_logging(level: Union[str, int] = "INFO",
                  log_file: Optional[Union[str, Path]] = None,
                  console: Optional[Console] = None) -> logging.Logger:
    """
    Configure the package logger.

    Console output goes through rich; an optional log file receives
    everything at DEBUG with timestamps.

    Args:
        level: Console log level
        log_file: Optional path of a plain-text log file
        console: Rich console to log to (the CLI passes a stderr console)

    Returns:
        logging.Logger: The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    console_handler.setLevel(level.upper() if isinstance(level, str) else level)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    return logger
