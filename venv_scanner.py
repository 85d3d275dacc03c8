#!/usr/bin/env python3
"""
Virtual environment discovery

Walks a root directory looking for virtual environments (directories
holding a pyvenv.cfg). Matched directories are pruned, links are never
followed and the walk stops at a fixed depth below the root.
"""

import os
from typing import Callable, Optional

from removal_executor import is_reparse_point

VENV_MARKER = "pyvenv.cfg"
DEFAULT_MAX_DEPTH = 8

# Never descended into: large trees that cannot hold a relevant environment
SKIPPED_DIRECTORIES = frozenset({".git", "node_modules", "$recycle.bin", "windowsapps"})


def _has_marker(filenames: list[str]) -> bool:
    return any(name.lower() == VENV_MARKER for name in filenames)


def find_virtual_envs(
    root: str,
    max_depth: int = DEFAULT_MAX_DEPTH,
    should_stop: Optional[Callable[[], bool]] = None,
    on_directory: Optional[Callable[[int], None]] = None,
) -> list[str]:
    """Return virtual environment directories under *root*

    Args:
        root: Directory to search
        max_depth: Deepest directory level examined (root is level 0)
        should_stop: Polled once per directory; a True result ends the walk
        on_directory: Receives the running count of directories examined
    """
    root = os.path.abspath(root)
    if not os.path.isdir(root) or is_reparse_point(root):
        return []

    base_depth = root.rstrip("\\/").count(os.sep)
    found: list[str] = []
    examined = 0

    for dirpath, dirnames, filenames in os.walk(root, topdown=True, followlinks=False):
        if should_stop and should_stop():
            break
        examined += 1
        if on_directory:
            on_directory(examined)

        if _has_marker(filenames):
            found.append(dirpath)
            dirnames[:] = []
            continue

        if dirpath.rstrip("\\/").count(os.sep) - base_depth >= max_depth:
            dirnames[:] = []
            continue

        dirnames[:] = [
            d
            for d in dirnames
            if d.lower() not in SKIPPED_DIRECTORIES and not is_reparse_point(os.path.join(dirpath, d))
        ]

    return found
