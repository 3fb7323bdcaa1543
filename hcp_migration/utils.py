"""Shared helpers for the listing and migration commands."""

from __future__ import annotations

import posixpath
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import LOG_TIMESTAMP_FORMAT

# Constants for time conversions
SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600

_REPEATED_SLASHES = re.compile(r"/{2,}")


def timestamped_name(file_name: str, prefix: str = "", now: Optional[datetime] = None) -> str:
    """Return file_name with an optional _prefix infix and a run timestamp suffix.

    >>> timestamped_name("migration_fails.txt", now=datetime(2021, 3, 4, 5, 6, 7))
    'migration_fails.txt.03-04-2021-05-06-07'
    """
    stamp = (now or datetime.now()).strftime(LOG_TIMESTAMP_FORMAT)
    if not prefix:
        return f"{file_name}{stamp}"
    safe_prefix = prefix.strip("/").replace("/", "-")
    return f"{file_name}_{safe_prefix}{stamp}"


def read_lines(path: Path) -> list[str]:
    """Read non-blank lines from a text file, without trailing newlines."""
    with open(path, encoding="utf-8") as handle:
        return [line.rstrip("\r\n") for line in handle if line.strip()]


def join_path(*parts: str) -> str:
    """Join slash-separated segments, skipping empty ones, and clean the result."""
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    return posixpath.normpath(_REPEATED_SLASHES.sub("/", joined))


def format_duration(seconds: float) -> str:
    """Format a latency or run time for humans"""
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    if seconds < SECONDS_PER_MINUTE:
        return f"{seconds:.2f}s"
    if seconds < SECONDS_PER_HOUR:
        minutes = int(seconds / SECONDS_PER_MINUTE)
        secs = int(seconds % SECONDS_PER_MINUTE)
        return f"{minutes}m {secs}s"
    hours = int(seconds / SECONDS_PER_HOUR)
    minutes = int((seconds % SECONDS_PER_HOUR) / SECONDS_PER_MINUTE)
    return f"{hours}h {minutes}m"
