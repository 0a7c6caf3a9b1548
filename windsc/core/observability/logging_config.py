"""
Logging configuration — one call from the CLI entry point.

Modules only do ``logger = logging.getLogger(__name__)``; handlers and
levels are decided here.

Console level precedence:
    --debug / --verbose / --quiet  >  WINDSC_LOG_LEVEL  >  WARNING

WINDSC_LOG_FILE adds a file handler with its own level
(WINDSC_LOG_FILE_LEVEL, defaulting to the console level).
"""

from __future__ import annotations

import logging
import sys

# (upper bound, format, datefmt); the first bound >= level wins
_CONSOLE_FORMATS = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# paramiko logs every transport negotiation step at INFO
_NOISY_LOGGERS = ("paramiko", "paramiko.transport")


def parse_level(level: str | None) -> int:
    """Convert a level name to its numeric constant (WARNING if unknown)."""
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.strip().upper())
    return numeric if isinstance(numeric, int) else logging.WARNING


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _CONSOLE_FORMATS[-1][1:]
    for bound, bound_fmt, bound_datefmt in _CONSOLE_FORMATS:
        if level <= bound:
            fmt, datefmt = bound_fmt, bound_datefmt
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Replace the root logger's handlers with windsc's console (and file) output.

    Args:
        level: Console level name.
        log_file: Optional path of a log file to append to.
        log_file_level: Level for the file handler. Defaults to ``level``.
        quiet_third_party: Hold paramiko at WARNING unless the console
            is at DEBUG.
    """
    console_level = parse_level(level)
    handlers = [_console_handler(console_level)]
    root_level = console_level

    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else console_level
        handlers.append(_file_handler(log_file, file_level))
        root_level = min(root_level, file_level)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # Handler I/O errors are dropped
    logging.raiseExceptions = False
