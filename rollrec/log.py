"""Logging setup for rollrec."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

LOGGER_NAME = "rollrec"


def setup_logging(*, verbose: bool = False) -> logging.Logger:
    """Set up console logging for the application.

    The package logger itself always runs at DEBUG so that per-attempt log
    files receive everything; the console handler filters by verbosity.

    Args:
        verbose: Enable debug-level logging on the console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Remove any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    logger.setLevel(logging.DEBUG)

    level = logging.DEBUG if verbose else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if verbose:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter("%(message)s")

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Prevent propagation to root logger
    logger.propagate = False

    return logger


def open_attempt_log(path: Path) -> logging.FileHandler:
    """Attach a DEBUG file sink for one recording attempt.

    Args:
        path: Log file to create

    Returns:
        The attached handler; pass it to close_attempt_log when the attempt ends

    Raises:
        OSError: If the log file cannot be created
    """
    handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        logging.Formatter(
            "time=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s",
        ),
    )
    logger = logging.getLogger(LOGGER_NAME)
    if logger.level == logging.NOTSET or logger.level > logging.DEBUG:
        logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    return handler


def close_attempt_log(handler: logging.Handler) -> None:
    """Detach and close an attempt's file sink."""
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()


def log_command(logger: logging.Logger, cmd: list[str] | tuple[str, ...]) -> None:
    """Log a command that will be executed.

    Args:
        logger: Logger instance
        cmd: Command and arguments list
    """
    logger.info("Running ffmpeg: %s", " ".join(cmd))


def log_process_result(
    logger: logging.Logger,
    process_name: str,
    return_code: int,
    *,
    expected: bool,
) -> None:
    """Log the result of a process execution.

    Args:
        logger: Logger instance
        process_name: Name of the process for logging
        return_code: Process return code
        expected: Whether the code is a normal termination outcome
    """
    if return_code == 0:
        logger.info("%s finished successfully", process_name)
    elif expected:
        logger.info("%s exited with expected code %d", process_name, return_code)
    else:
        logger.error("%s exited with unexpected error code %d", process_name, return_code)


def format_elapsed_time(seconds: int) -> str:
    """Format elapsed time in HH:MM:SS format.

    Args:
        seconds: Total elapsed seconds

    Returns:
        Formatted time string
    """
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
