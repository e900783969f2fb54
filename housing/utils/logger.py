"""Process-wide logging and the pipe-delimited event lines the engine writes.

Allocation runs, ledger commits and verification changes are logged as
``Event name | key=value | key=value`` so one run can be followed across
layers with a plain grep.
"""

from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import Optional

from housing.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Later calls with an explicit ``level`` only adjust the root level.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        if level:
            logging.getLogger().setLevel(level.upper())
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, stream=sys.stdout)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)


def format_event(event: str, **fields: object) -> str:
    """Render ``event | key=value | ...`` in keyword order.

    Enum members print as their value and sequences as comma-joined items.
    """
    parts = [event]
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, (list, tuple)):
            value = ",".join(str(item) for item in value)
        parts.append(f"{key}={value}")
    return " | ".join(parts)


def log_event(logger: logging.Logger, level: int, event: str, **fields: object) -> None:
    if logger.isEnabledFor(level):
        logger.log(level, format_event(event, **fields))
