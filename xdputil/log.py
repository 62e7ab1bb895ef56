"""Levelled logging to standard error."""

from __future__ import annotations

import sys
from enum import IntEnum


class LogLevel(IntEnum):
    """Logging levels; higher values are more verbose."""

    WARN = 0
    INFO = 1
    DEBUG = 2
    VERBOSE = 3


class _LogState:
    level: LogLevel = LogLevel.INFO


_state = _LogState()


def log_print(level, message, indent=0):
    """Write *message* to stderr, indented, if *level* is enabled.

    Returns the number of message characters written (0 when suppressed).
    """
    if level > _state.level:
        return 0
    sys.stderr.write(" " * indent + message)
    return len(message)


def pr_warn(message):
    """Log *message* at warning level."""
    return log_print(LogLevel.WARN, message)


def pr_info(message):
    """Log *message* at info level."""
    return log_print(LogLevel.INFO, message)


def pr_debug(message):
    """Log *message* at debug level."""
    return log_print(LogLevel.DEBUG, message)


def set_log_level(level):
    """Set the current log level and return the previous one."""
    new_level = LogLevel(level)
    old_level = _state.level
    _state.level = new_level
    return old_level


def get_log_level():
    """Return the current log level."""
    return _state.level


def increase_log_level():
    """Raise the log level by one step, up to VERBOSE; return the new level."""
    if _state.level < LogLevel.VERBOSE:
        _state.level = LogLevel(_state.level + 1)
    return _state.level