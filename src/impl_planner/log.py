"""Logging configuration for impl-planner.

The library itself only calls ``logging.getLogger(__name__)``; applications
and the CLI call :func:`configure_logging` once at startup.
"""

from __future__ import annotations

import logging
import os

LOG_LEVEL_ENV = "IMPL_PLANNER_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _resolve_level(value: int | str | None) -> int:
    if isinstance(value, int):
        return value
    for candidate in (value, os.environ.get(LOG_LEVEL_ENV)):
        if isinstance(candidate, str):
            level = logging.getLevelName(candidate.strip().upper())
            if isinstance(level, int):
                return level
    return logging.WARNING


def configure_logging(level: int | str | None = None) -> int:
    """Configure root logging and return the effective level."""
    resolved = _resolve_level(level)
    root = logging.getLogger()
    if not root.hasHandlers():
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    else:
        root.setLevel(resolved)
    logging.getLogger("impl_planner").setLevel(resolved)
    return resolved
