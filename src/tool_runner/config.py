"""Environment configuration.

Environment variables:
    TR_LOG_DIR: Directory for log files
        - unset = console logging only
        - set = debugLogs.log, logs.log and errors.log are written there

    TR_LOG_LEVEL: Console log level
        - error = errors only
        - info = tool output and progress (default)
        - debug = everything, including silent process output

    TR_LOG_LABELS: Prefix log lines with the process label
        - true/1/yes = on (default)
        - false/0/no = off

    TR_KILL_TIMEOUT: Seconds to wait for a process to exit after SIGKILL
        - default 5.0

    TR_DRAIN_TIMEOUT: Seconds to wait for output readers after exit
        - default 2.0

    TR_STREAM_LIMIT: Maximum length of one output line in bytes
        - default 1048576

    TR_PREVIEW_HOST / TR_PREVIEW_PORT: Preview server bind address
        - default 127.0.0.1 / 0 (0 = random port)

    TR_SIGINT_MODE: SIGINT (Ctrl+C) handling
        - cancel = kill running child processes, exit if none are running (default)
        - exit = kill child processes and exit
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

__all__ = ["Config", "LogLevel", "SigintMode", "get_config", "load_config", "reload_config"]


class LogLevel(Enum):
    ERROR = "error"
    INFO = "info"
    DEBUG = "debug"

    @classmethod
    def from_string(cls, value: str) -> "LogLevel":
        """Parse a level name, unknown values fall back to INFO."""
        value = value.lower().strip()
        for level in cls:
            if level.value == value:
                return level
        return cls.INFO


class SigintMode(Enum):
    """SIGINT handling mode.

    - CANCEL: kill running child processes; exit only when none are running
    - EXIT: kill running child processes and exit
    """

    CANCEL = "cancel"
    EXIT = "exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_int(value: str | None, default: int, low: int) -> int:
    if not value:
        return default
    try:
        return max(low, int(value))
    except ValueError:
        return default


@dataclass
class Config:
    """Runtime configuration.

    Attributes:
        log_dir: Directory for log files (None = console only)
        log_level: Console log level
        log_labels: Prefix log lines with process labels
        kill_timeout: Seconds to wait for exit after SIGKILL
        drain_timeout: Seconds to wait for output readers after exit
        stream_limit: Maximum output line length in bytes
        preview_host: Preview server host
        preview_port: Preview server port (0 = random)
        sigint_mode: SIGINT handling mode
    """

    log_dir: Path | None = None
    log_level: LogLevel = LogLevel.INFO
    log_labels: bool = True
    kill_timeout: float = 5.0
    drain_timeout: float = 2.0
    stream_limit: int = 1024 * 1024
    preview_host: str = "127.0.0.1"
    preview_port: int = 0
    sigint_mode: SigintMode = SigintMode.CANCEL

    def __repr__(self) -> str:
        return (
            f"Config(log_dir={self.log_dir}, "
            f"log_level={self.log_level.value}, "
            f"log_labels={self.log_labels}, "
            f"kill_timeout={self.kill_timeout}, "
            f"drain_timeout={self.drain_timeout}, "
            f"stream_limit={self.stream_limit}, "
            f"preview={self.preview_host}:{self.preview_port}, "
            f"sigint_mode={self.sigint_mode.value})"
        )


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_dir = os.environ.get("TR_LOG_DIR")

    return Config(
        log_dir=Path(log_dir) if log_dir else None,
        log_level=LogLevel.from_string(os.environ.get("TR_LOG_LEVEL") or "info"),
        log_labels=_parse_bool(os.environ.get("TR_LOG_LABELS"), default=True),
        kill_timeout=_parse_float(os.environ.get("TR_KILL_TIMEOUT"), 5.0, 0.1, 60.0),
        drain_timeout=_parse_float(os.environ.get("TR_DRAIN_TIMEOUT"), 2.0, 0.0, 60.0),
        stream_limit=_parse_int(os.environ.get("TR_STREAM_LIMIT"), 1024 * 1024, 64 * 1024),
        preview_host=os.environ.get("TR_PREVIEW_HOST") or "127.0.0.1",
        preview_port=_parse_int(os.environ.get("TR_PREVIEW_PORT"), 0, 0),
        sigint_mode=SigintMode.from_string(os.environ.get("TR_SIGINT_MODE") or "cancel"),
    )


# Global instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
