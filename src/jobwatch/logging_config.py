"""Logging for the ``jw`` command line.

Everything logs under the ``jobwatch`` logger tree; ``setup_logging`` attaches
the handlers once. Individual subtrees can be made louder or quieter with
``JW_LOG_MODULE_LEVELS``, e.g. ``tracking.poll=DEBUG,backend.http=WARNING``.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Dict, Optional, Union

ROOT_LOGGER = "jobwatch"
MODULE_LEVELS_ENV = "JW_LOG_MODULE_LEVELS"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_CONFIGURED = False


def resolve_level(level: Union[int, str]) -> int:
    """Turn "DEBUG"/"info"/10 into a logging level, defaulting to INFO."""
    if isinstance(level, int):
        return level
    resolved = getattr(logging, str(level).strip().upper(), None)
    return resolved if isinstance(resolved, int) else logging.INFO


def module_levels(raw: str) -> Dict[str, int]:
    """Map logger names to levels from ``name=LEVEL`` pairs.

    Pairs are separated by commas. Names outside the ``jobwatch`` tree are
    taken as relative to it. Pairs without ``=`` or with an unknown level are
    skipped.
    """
    levels: Dict[str, int] = {}
    for pair in raw.split(","):
        name, sep, level_name = pair.partition("=")
        name, level_name = name.strip(), level_name.strip().upper()
        if not sep or not name:
            continue
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            continue
        if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
            name = f"{ROOT_LOGGER}.{name}"
        levels[name] = level
    return levels


def _handler(handler: logging.Handler) -> logging.Handler:
    # Handlers pass everything; levels are decided on the loggers.
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[Path] = None) -> None:
    """Send ``jobwatch`` logs to stderr, and to ``log_file`` when given.

    Only the first call has an effect.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolve_level(level))
    logger.handlers.clear()
    logger.addHandler(_handler(logging.StreamHandler(sys.stderr)))
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(_handler(logging.FileHandler(log_file, encoding="utf-8")))
    logger.propagate = False

    for name, module_level in module_levels(os.getenv(MODULE_LEVELS_ENV, "")).items():
        logging.getLogger(name).setLevel(module_level)

    _CONFIGURED = True
