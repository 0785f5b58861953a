"""Output logger for launched tools.

ToolLogger is passed explicitly to every ProcessHandle, registry and
preview server that reports tool output. It wraps a stdlib logger:

- open(): attach a stderr handler at the configured console level, and
  when a log directory is given, three files:
  debugLogs.log (everything), logs.log (info and up), errors.log (errors)
- close(): detach and close every handler

An unopened ToolLogger still works: records propagate to whatever the
application configured on the root logger.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path

from .config import LogLevel, get_config

__all__ = ["LOG_FORMAT", "ToolLogger"]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_ANSI_ESCAPE = re.compile(r"\x1b\[[\d;]*m")

_CONSOLE_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}


class _PlainFormatter(logging.Formatter):
    """Strip terminal colour codes before writing to a file."""

    def format(self, record: logging.LogRecord) -> str:
        return _ANSI_ESCAPE.sub("", super().format(record))


class ToolLogger:
    """Labelled logger for tool output.

    Example:
        tool_logger = ToolLogger()
        tool_logger.open(log_dir=Path("artifacts"))
        try:
            registry = ProcessRegistry(tool_logger)
            ...
        finally:
            tool_logger.close()
    """

    DEBUG_LOG = "debugLogs.log"
    INFO_LOG = "logs.log"
    ERROR_LOG = "errors.log"

    def __init__(self, name: str = "tool_runner.output", label: str = "tool-runner") -> None:
        self.label = label
        self.enable_labels = True
        self.log_dir: Path | None = None
        self._logger = logging.getLogger(name)
        self._handlers: list[logging.Handler] = []

    @property
    def is_open(self) -> bool:
        return bool(self._handlers)

    def open(
        self,
        log_dir: Path | str | None = None,
        console_level: LogLevel | str | None = None,
        enable_labels: bool | None = None,
    ) -> None:
        """Attach console and file handlers.

        Args:
            log_dir: Directory for the log files (None = console only)
            console_level: Console level (default from config)
            enable_labels: Prefix lines with labels (default from config)
        """
        config = get_config()
        if self.is_open:
            self.close()

        if console_level is None:
            console_level = config.log_level
        elif isinstance(console_level, str):
            console_level = LogLevel.from_string(console_level)
        self.enable_labels = config.log_labels if enable_labels is None else enable_labels

        console = logging.StreamHandler(sys.stderr)
        console.setLevel(_CONSOLE_LEVELS[console_level])
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        self._handlers.append(console)

        if log_dir is None:
            log_dir = config.log_dir
        if log_dir is not None:
            self.log_dir = Path(log_dir)
            self.log_dir.mkdir(parents=True, exist_ok=True)
            for file_name, level in (
                (self.DEBUG_LOG, logging.DEBUG),
                (self.INFO_LOG, logging.INFO),
                (self.ERROR_LOG, logging.ERROR),
            ):
                handler = logging.FileHandler(self.log_dir / file_name, mode="w", encoding="utf-8")
                handler.setLevel(level)
                handler.setFormatter(_PlainFormatter(LOG_FORMAT))
                self._handlers.append(handler)

        for handler in self._handlers:
            self._logger.addHandler(handler)
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

    def close(self) -> None:
        """Detach and close all handlers."""
        for handler in self._handlers:
            self._logger.removeHandler(handler)
            handler.close()
        self._handlers.clear()
        self._logger.propagate = True

    def debug(self, content: object, label: str | None = None) -> None:
        self._logger.debug(self._prepare(content, label))

    def info(self, content: object, label: str | None = None) -> None:
        self._logger.info(self._prepare(content, label))

    def error(self, error: object, label: str | None = None) -> None:
        """Log an error message or exception (with its traceback)."""
        if isinstance(error, BaseException):
            self._logger.error(self._prepare(error, label), exc_info=error)
        else:
            self._logger.error(self._prepare(error, label))

    def _prepare(self, content: object, label: str | None) -> str:
        text = str(content).rstrip("\n")
        if self.enable_labels:
            return f"{label or self.label}: {text}"
        return text
