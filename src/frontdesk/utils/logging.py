"""Logging helpers with consistent formatting."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from rich.logging import RichHandler

from frontdesk.utils.env import get_bool_env


def _default_level() -> int:
    raw = os.getenv("FRONTDESK_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str, level: Optional[int] = None, *, rich: Optional[bool] = None) -> logging.Logger:
    """Configure and return a logger.

    ``FRONTDESK_LOG_LEVEL`` sets the default level and ``FRONTDESK_RICH_LOGS=0``
    switches to plain stdout output (useful under process supervisors).
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = level if level is not None else _default_level()
    logger.setLevel(level)

    if rich is None:
        rich = get_bool_env("FRONTDESK_RICH_LOGS", default=True)
    if rich:
        handler: logging.Handler = RichHandler(
            level=level,
            markup=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            show_time=True,
            show_path=False,
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s %(name)s %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)
    logger.propagate = False
    return logger
