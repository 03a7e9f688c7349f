"""Logging configuration using loguru"""

import sys
from pathlib import Path
from typing import Optional, TextIO

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure the tracker's loguru sinks.

    Two sinks are installed:
    - a colored console sink for lookup progress, verification attempts and
      scheduler batch summaries (INFO, or DEBUG with verbose). It writes to
      stdout unless another stream is given; JSON lookups pass stderr so the
      document on stdout stays parseable.
    - an optional DEBUG file sink under the data directory that keeps every
      waitlist diff and retry, rotated at 50 MB and kept for 14 days so a
      long-running --schedule process leaves a bounded trail.

    Args:
        verbose: Enable debug-level console logging
        log_file: Optional file path for the DEBUG sink
        stream: Console stream (defaults to sys.stdout at call time)
    """
    logger.remove()

    logger.add(
        stream or sys.stdout,
        format=CONSOLE_FORMAT,
        level="DEBUG" if verbose else "INFO",
        colorize=True,
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="50 MB",
            retention="14 days",
            compression="zip",
            enqueue=True,  # scheduler runs alongside lookups
        )
        logger.debug(f"Logging to file: {log_file}")
