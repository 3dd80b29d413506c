"""
Logging setup for the cloudadmin process.

main.py calls ``setup_logging`` once; library modules only ever do
``logger = logging.getLogger(__name__)``.

Console verbosity comes from the CLI flags, falling back to
CLOUDADMIN_LOG_LEVEL and then WARNING.  CLOUDADMIN_LOG_FILE adds a
session log (level from CLOUDADMIN_LOG_FILE_LEVEL) that is rolled over
to ``<file>.old`` once it reaches 2 MiB.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# (format, datefmt) for the console, by threshold
_CONSOLE_FORMATS: list[tuple[int, str, str | None]] = [
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
]
_CONSOLE_DEFAULT = "%(message)s"

_SESSION_LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)-5s [%(threadName)s] %(name)s — %(message)s"
_SESSION_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

SESSION_LOG_MAX_BYTES = 2 * 1024 * 1024

# asyncio logs slow callbacks and executor details at DEBUG/INFO
_CHATTY = ("asyncio",)


class _OldSuffixRotatingHandler(RotatingFileHandler):
    """Keeps exactly one backup, named ``<file>.old``."""

    def rotation_filename(self, default_name: str) -> str:
        return f"{self.baseFilename}.old"


def _level_number(name: str | None, default: int = logging.WARNING) -> int:
    value = logging.getLevelName(name.upper()) if name else None
    return value if isinstance(value, int) else default


def _console_handler(threshold: int) -> logging.Handler:
    fmt, datefmt = _CONSOLE_DEFAULT, None
    for limit, candidate, candidate_datefmt in _CONSOLE_FORMATS:
        if threshold <= limit:
            fmt, datefmt = candidate, candidate_datefmt
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(threshold)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _session_log_handler(path: str, threshold: int) -> logging.Handler:
    """Open the rotating session log.  Raises OSError when it cannot be created."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    handler = _OldSuffixRotatingHandler(
        path, maxBytes=SESSION_LOG_MAX_BYTES, backupCount=1, encoding="utf-8",
    )
    handler.setLevel(threshold)
    handler.setFormatter(logging.Formatter(_SESSION_LOG_FORMAT, datefmt=_SESSION_LOG_DATEFMT))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> bool:
    """Install the console handler and, optionally, the session log.

    Args:
        level: Console level name.  Unknown names mean WARNING.
        log_file: Session log path.
        log_file_level: Session log level (default: same as ``level``).
        quiet_third_party: Hold chatty library loggers at WARNING unless
            the console is at DEBUG.

    Returns:
        False if the session log could not be opened.  Console logging
        is configured either way.
    """
    console_level = _level_number(level)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_console_handler(console_level))
    root_level = console_level
    opened = True

    if log_file:
        file_level = _level_number(log_file_level, default=console_level)
        try:
            root.addHandler(_session_log_handler(log_file, file_level))
        except OSError as e:
            opened = False
            root.warning("Cannot open log file %s: %s", log_file, e)
        else:
            root_level = min(root_level, file_level)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _CHATTY:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False
    return opened
