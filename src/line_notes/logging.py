"""Shared logging for the note engine and its command-line surfaces.

Messages go to stderr so that CLI output on stdout stays machine readable:
- DEBUG lines only when the logger is verbose
- Warnings for recoverable conditions (missing file context, notes that could not move)
- Errors and exceptions for failed reconciliation tasks
"""

import sys
import traceback
from enum import Enum
from typing import Any


class LogLevel(Enum):
    """Log levels for console output."""
    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


_COLORS = {
    LogLevel.DEBUG: "36",  # Cyan
    LogLevel.INFO: "37",  # White
    LogLevel.WARNING: "33",  # Yellow
    LogLevel.ERROR: "31",  # Red
}

_PREFIXES = {
    LogLevel.DEBUG: "DEBUG: ",
    LogLevel.INFO: "",
    LogLevel.WARNING: "Warning: ",
    LogLevel.ERROR: "Error: ",
}


class Logger:
    """Stderr logger used by the reconcilers, the task queue and the CLI.

    Attributes:
        verbose: If True, DEBUG messages and tracebacks are printed
        use_colors: If True, use ANSI color codes
    """

    def __init__(self, verbose: bool = False, use_colors: bool = True) -> None:
        self.verbose = verbose
        self.use_colors = use_colors and sys.stderr.isatty()

    def _colorize(self, text: str, color_code: str) -> str:
        if not self.use_colors:
            return text
        return f"\033[{color_code}m{text}\033[0m"

    def _emit(self, level: LogLevel, message: str, fields: dict[str, Any]) -> None:
        line = f"{_PREFIXES[level]}{message}"
        if fields:
            details = " ".join(f"{k}={v!r}" for k, v in fields.items())
            line += f" ({details})"
        print(self._colorize(line, _COLORS[level]), file=sys.stderr)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Reconciliation detail, printed only in verbose mode.

        Keyword arguments are appended as ``key=value`` pairs.
        """
        if self.verbose:
            self._emit(LogLevel.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._emit(LogLevel.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._emit(LogLevel.WARNING, message, kwargs)

    def error(self, message: str, suggestion: str | None = None) -> None:
        """Print an error, followed by an indented hint when ``suggestion`` is given."""
        self._emit(LogLevel.ERROR, message, {})
        if suggestion:
            print(self._colorize(f"  -> {suggestion}", "33"), file=sys.stderr)

    def exception(self, message: str, exc: BaseException) -> None:
        """Report a failed task as ``message: exc``; verbose mode adds the traceback."""
        self.error(f"{message}: {exc}")
        if not self.verbose:
            return
        trace = traceback.format_exception(type(exc), exc, exc.__traceback__)
        print(self._colorize("".join(trace), "90"), file=sys.stderr)


# Process-wide logger shared by the engine components
_logger: Logger | None = None


def init_logger(verbose: bool = False, use_colors: bool = True) -> Logger:
    """Replace the shared logger; called once by each entry point after reading flags."""
    global _logger
    _logger = Logger(verbose=verbose, use_colors=use_colors)
    return _logger


def get_logger() -> Logger:
    """Return the shared logger, creating a quiet one on first use.

    Components resolve it lazily, so the engine can be embedded without any
    logging setup.
    """
    global _logger
    if _logger is None:
        _logger = Logger()
    return _logger
