#!/usr/bin/env python3
"""
Auxiliary utility functions for Exaleipsis

Formatting helpers shared by the console output, the event log and the
CSV report.
"""

import pathlib
from datetime import datetime
from typing import Optional


def format_bytes(size_bytes: int) -> str:
    """Format byte size into human-readable string

    Args:
        size_bytes: Size in bytes to format

    Returns:
        Formatted string like "1.2 GiB", "345 MiB", "12 KiB", or "789 B"
    """
    if size_bytes >= 1024**3:
        return f"{size_bytes / (1024**3):.1f} GiB"
    if size_bytes >= 1024**2:
        return f"{size_bytes / (1024**2):.1f} MiB"
    if size_bytes >= 1024:
        return f"{size_bytes / 1024:.1f} KiB"
    return f"{size_bytes} B"


def format_path_for_display(path: str, home_path: Optional[str] = None) -> str:
    """Format file path for display by replacing home directory with ~

    Args:
        path: File path to format
        home_path: Home directory path (defaults to platform home)

    Returns:
        Path with home directory replaced by ~ if applicable
    """
    if home_path is None:
        home_path = str(pathlib.Path.home())

    if not home_path or not path.lower().startswith(home_path.lower()):
        return path
    rest = path[len(home_path) :]
    # the match must end on a path segment boundary
    if rest and rest[0] not in "\\/" and home_path[-1] not in "\\/":
        return path
    return "~" + rest


def format_timestamp(moment: datetime) -> str:
    """Format a timestamp with millisecond precision, e.g. 2026-10-19 10:18:03.127"""
    return moment.strftime("%Y-%m-%d %H:%M:%S.") + f"{moment.microsecond // 1000:03d}"


def file_stamp(moment: Optional[datetime] = None) -> str:
    """Timestamp suitable for artifact file names"""
    return (moment or datetime.now()).strftime("%Y%m%d_%H%M%S")
