"""Locate sgrace.toml.

The file is searched upward from the working directory, the way git
finds ``.git/``.  ``SGRACE_CONFIG`` names a file directly and disables the
search; ``--config`` bypasses this module altogether.
"""

from __future__ import annotations

import os
from pathlib import Path

CONFIG_FILENAME = "sgrace.toml"
CONFIG_ENV_VAR = "SGRACE_CONFIG"


def find_config(start: Path | None = None) -> Path | None:
    """Return the nearest sgrace.toml at or above *start* (default: cwd).

    When ``SGRACE_CONFIG`` is set, only that file is considered.
    """
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        candidate = Path(override)
        return candidate if candidate.is_file() else None

    directory = (start or Path.cwd()).resolve()
    for folder in (directory, *directory.parents):
        candidate = folder / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None
