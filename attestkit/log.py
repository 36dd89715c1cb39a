"""Pluggable logging used by library code.

By default nothing is printed. Callers install their own :class:`Logger`
with :func:`set_logger` to capture output.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any

__all__ = [
    "Logger",
    "SilentLogger",
    "set_logger",
    "get_logger",
    "errorf",
    "error",
    "warnf",
    "warn",
    "debugf",
    "debug",
    "infof",
    "info",
]


class Logger(ABC):
    """Interface that library code logs through."""

    @abstractmethod
    def errorf(self, fmt: str, *args: Any) -> None:
        """Log a formatted error message."""

    @abstractmethod
    def error(self, *args: Any) -> None:
        """Log an error."""

    @abstractmethod
    def warnf(self, fmt: str, *args: Any) -> None:
        """Log a formatted warning."""

    @abstractmethod
    def warn(self, *args: Any) -> None:
        """Log a warning."""

    @abstractmethod
    def debugf(self, fmt: str, *args: Any) -> None:
        """Log a formatted debug message."""

    @abstractmethod
    def debug(self, *args: Any) -> None:
        """Log a debug message."""

    @abstractmethod
    def infof(self, fmt: str, *args: Any) -> None:
        """Log a formatted informational message."""

    @abstractmethod
    def info(self, *args: Any) -> None:
        """Log an informational message."""


class SilentLogger(Logger):
    """A logger that prints nothing; the default.

    It only counts how many messages it has suppressed.
    """

    def __init__(self) -> None:
        self.suppressed = 0

    def _suppress(self) -> None:
        self.suppressed += 1

    def errorf(self, fmt: str, *args: Any) -> None:
        self._suppress()

    def error(self, *args: Any) -> None:
        self._suppress()

    def warnf(self, fmt: str, *args: Any) -> None:
        self._suppress()

    def warn(self, *args: Any) -> None:
        self._suppress()

    def debugf(self, fmt: str, *args: Any) -> None:
        self._suppress()

    def debug(self, *args: Any) -> None:
        self._suppress()

    def infof(self, fmt: str, *args: Any) -> None:
        self._suppress()

    def info(self, *args: Any) -> None:
        self._suppress()


class _Current:
    """Holds the logger that library code writes to."""

    def __init__(self) -> None:
        self.logger: Logger = SilentLogger()


_current = _Current()

_VERB = re.compile(r"%%|%\+?([vwq])")


def _convert_verb(match: re.Match[str]) -> str:
    verb = match.group(1)
    if verb is None:
        return "%%"
    return "%r" if verb == "q" else "%s"


def _format(fmt: str, args: tuple[Any, ...]) -> str:
    converted = _VERB.sub(_convert_verb, fmt)
    try:
        return converted % args
    except (TypeError, ValueError):
        if not args:
            return fmt
        return " ".join([fmt, *(str(a) for a in args)])


def _wrap(fmt: str, args: tuple[Any, ...]) -> Exception:
    err = Exception(_format(fmt, args))
    err.__cause__ = next((a for a in args if isinstance(a, BaseException)), None)
    return err


def _has_error(args: tuple[Any, ...]) -> bool:
    return any(isinstance(a, BaseException) for a in args)


def set_logger(logger: Logger) -> None:
    """Install the logger that all library code uses."""
    _current.logger = logger


def get_logger() -> Logger:
    """Return the logger currently in use."""
    return _current.logger


def errorf(fmt: str, *args: Any) -> None:
    """Format an error and pass it to the logger's ``error``."""
    _current.logger.error(_wrap(fmt, args))


def error(*args: Any) -> None:
    _current.logger.error(*args)


def warnf(fmt: str, *args: Any) -> None:
    """Log a formatted warning, wrapping it as an error if an exception is among the arguments."""
    if _has_error(args):
        _current.logger.warn(_wrap(fmt, args))
        return
    _current.logger.warnf(fmt, *args)


def warn(*args: Any) -> None:
    _current.logger.warn(*args)


def debugf(fmt: str, *args: Any) -> None:
    """Log a formatted debug message, wrapping it as an error if an exception is among the arguments."""
    if _has_error(args):
        _current.logger.debug(_wrap(fmt, args))
        return
    _current.logger.debugf(fmt, *args)


def debug(*args: Any) -> None:
    _current.logger.debug(*args)


def infof(fmt: str, *args: Any) -> None:
    _current.logger.infof(fmt, *args)


def info(*args: Any) -> None:
    _current.logger.info(*args)