"""Path and size handling utilities for rollrec."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
VIDEO_SUFFIX = ".mkv"
LOG_SUFFIX = ".log"

_UNITS = {
    "": 1024 * 1024,  # bare numbers are megabytes
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024 * 1024,
    "mb": 1024 * 1024,
    "g": 1024 * 1024 * 1024,
    "gb": 1024 * 1024 * 1024,
}

_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-z]*)$")


class SizeParseError(ValueError):
    """Raised when a size string cannot be converted to bytes."""


@dataclass(frozen=True)
class AttemptPaths:
    """Artifact and log file paths for one recording attempt."""

    video: Path
    log: Path


def parse_size(value: str) -> int:
    """Parse a size string (e.g. '1024', '500M', '1.5GB') into bytes.

    Args:
        value: Size string; a bare number is interpreted as megabytes

    Returns:
        Size in bytes

    Raises:
        SizeParseError: If the string is not a positive size
    """
    s = value.strip().lower()
    match = _SIZE_RE.match(s)
    if not match or match.group(2) not in _UNITS:
        raise SizeParseError(f"Invalid size: {value!r}")

    size = int(float(match.group(1)) * _UNITS[match.group(2)])
    if size <= 0:
        raise SizeParseError(f"Size must be positive: {value!r}")
    return size


def format_file_size(size: int) -> str:
    """Format a byte count as a human-readable string (KB, MB, GB)."""
    kb = 1024
    mb = 1024 * kb
    gb = 1024 * mb

    if size >= gb:
        return f"{size / gb:.2f} GB"
    if size >= mb:
        return f"{size / mb:.2f} MB"
    if size >= kb:
        return f"{size / kb:.2f} KB"
    return f"{size} bytes"


def build_attempt_paths(outdir: Path, now: datetime | None = None) -> AttemptPaths:
    """Build the video and log paths for a new attempt.

    Names are derived from the local time with second granularity. If a file
    with that name already exists, a numeric suffix is appended so an earlier
    recording is never overwritten.

    Args:
        outdir: Output directory
        now: Timestamp to use (defaults to the current local time)

    Returns:
        Paths for the attempt's video file and log file
    """
    base = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    name = base
    counter = 0
    while (outdir / f"{name}{VIDEO_SUFFIX}").exists() or (outdir / f"{name}{LOG_SUFFIX}").exists():
        counter += 1
        name = f"{base}-{counter}"

    return AttemptPaths(
        video=outdir / f"{name}{VIDEO_SUFFIX}",
        log=outdir / f"{name}{LOG_SUFFIX}",
    )


def ensure_output_dir(outdir: Path) -> None:
    """Ensure the output directory exists.

    Args:
        outdir: Path to the output directory

    Raises:
        OSError: If directory cannot be created
    """
    outdir.mkdir(parents=True, exist_ok=True)
