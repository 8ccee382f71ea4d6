"""Root logging setup shared by every command.

Console output goes to stderr: stdout carries command output and, in host
mode, one JSON reply per line.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_LEVELS = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# aiohttp logs every request at INFO; asyncio reports slow callbacks at DEBUG
NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio")

LOG_FILE_MAX_BYTES = 512 * 1024
LOG_FILE_BACKUPS = 2

_installed: List[logging.Handler] = []


def resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    try:
        return LOG_LEVELS[level.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown log level '{level}'") from None


def _quiet(names: Iterable[str], level: int) -> None:
    floor = max(level, logging.WARNING)
    for name in names:
        logging.getLogger(name).setLevel(floor)


def _build_handlers(
    level: int,
    console: bool,
    log_file: Optional[Union[str, Path]],
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        )
    if not handlers:
        handlers.append(logging.NullHandler())

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    force: bool = False,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = LOG_FILE_MAX_BYTES,
    backup_count: int = LOG_FILE_BACKUPS,
    noisy_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Install stderr and/or rotating-file handlers on the root logger.

    Args:
        level: Level name ("info") or number.
        force: Replace handlers from an earlier call instead of only
            adjusting the level.
        console: Log to stderr.
        log_file: Rotating log file; parent directories are created.
        max_bytes: Size at which the log file rotates.
        backup_count: Rotated files kept.
        noisy_loggers: Library loggers held at WARNING or stricter.

    Handlers this function did not install are left in place.
    """
    numeric = resolve_level(level)
    root = logging.getLogger()
    root.setLevel(numeric)
    _quiet(noisy_loggers, numeric)

    if _installed and not force:
        for handler in _installed:
            handler.setLevel(numeric)
        return

    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed[:] = _build_handlers(numeric, console, log_file, max_bytes, backup_count)
    for handler in _installed:
        root.addHandler(handler)


__all__ = ["configure_logging", "resolve_level", "LOG_LEVELS", "NOISY_LOGGERS"]
