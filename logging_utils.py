#!/usr/bin/env python3
"""Logging for autospawn.

Every component logs under the ``autospawn`` parent logger, so one call to
setup_logging() configures console/file output for the whole process.
AUTOSPAWN_LOG_LEVEL (name or number) overrides the level.
"""

from __future__ import annotations

import logging
from typing import Optional

from env_utils import env_str

ROOT_LOGGER = "autospawn"
_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _level(default: int) -> int:
    raw = env_str("AUTOSPAWN_LOG_LEVEL")
    if not raw:
        return default
    raw = raw.upper()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
    return handler


def _parent() -> logging.Logger:
    parent = logging.getLogger(ROOT_LOGGER)
    if not parent.handlers:
        parent.addHandler(_handler(logging.StreamHandler(), logging.NOTSET))
        parent.setLevel(_level(logging.INFO))
    return parent


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Component logger, e.g. get_logger("executor") -> autospawn.executor."""
    _parent()
    logger = logging.getLogger(f"{ROOT_LOGGER}.{name}")
    if level is not None:
        logger.setLevel(level)
    return logger


def setup_logging(
    name: str = "main",
    log_file: Optional[str] = None,
    verbose: bool = False,
) -> logging.Logger:
    """Replace the process handlers: console plus an optional file."""
    parent = logging.getLogger(ROOT_LOGGER)
    for handler in list(parent.handlers):
        parent.removeHandler(handler)
        handler.close()
    console_level = logging.DEBUG if verbose else logging.INFO
    parent.setLevel(_level(console_level))
    parent.addHandler(_handler(logging.StreamHandler(), console_level))
    if log_file:
        parent.addHandler(_handler(logging.FileHandler(log_file), logging.DEBUG))
    return get_logger(name)
