"""
Apply log level from configuration.

Single log level for all loggers. LOG_LEVEL accepts debug | info | warn | error.
"""

from __future__ import annotations

import logging

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(raw: str | None) -> int:
    if not raw or not str(raw).strip():
        return logging.INFO
    return _LEVELS.get(str(raw).strip().lower(), logging.INFO)


def apply_log_level(level: int) -> None:
    """Set root logger level so every module logger uses this level."""
    root = logging.getLogger()
    root.setLevel(level)


def apply_log_level_from_config(level_name: str | None) -> None:
    """Resolve level name from config and apply to root logger."""
    apply_log_level(parse_level(level_name))
