"""Filesystem path helpers."""

from __future__ import annotations

import os
import re

_UNSAFE_NAME = re.compile(r"[^a-zA-Z0-9._-]")


def expand_tilde(path: str) -> str:
    """Expand a leading ``~/`` to the current user's home directory.

    Only the ``~/`` form is expanded; ``~user`` paths are returned unchanged.
    """
    if path == "~":
        return os.path.expanduser("~")
    if path.startswith("~/"):
        return os.path.join(os.path.expanduser("~"), path[2:])
    return path


def safe_filename(value: str) -> str:
    return _UNSAFE_NAME.sub("_", value)
