"""Error types raised by the process runtime.

Configuration problems are raised synchronously, before any process is
started. Process failures are raised from the awaited completion of a
ProcessHandle and carry the error lines captured for that process.
"""

from __future__ import annotations

import signal as _signal

__all__ = [
    "ConfigurationError",
    "ExplicitTermination",
    "ProcessError",
    "ProcessFailedError",
    "ToolFailure",
    "UnsupportedModeError",
    "VersionNotSupportedError",
]


class ProcessError(Exception):
    """Base class for all runtime errors."""


class ConfigurationError(ProcessError, ValueError):
    """Invalid launch configuration detected before the process starts."""


class UnsupportedModeError(ProcessError, ValueError):
    """Unknown launch mode, or a mode this platform cannot run."""


class VersionNotSupportedError(ProcessError):
    """The installed tool version is outside the supported range."""


class ProcessFailedError(ProcessError):
    """A launched process finished with a failure outcome.

    Attributes:
        process_name: Label of the process (may be None)
        errors: Error lines captured for the process, in receipt order
        returncode: Raw return code reported by asyncio
        signal: Signal that terminated the process, if any
    """

    def __init__(
        self,
        process_name: str | None,
        errors: list[str],
        returncode: int | None = None,
        signal: _signal.Signals | None = None,
    ) -> None:
        self.process_name = process_name
        self.errors = errors
        self.returncode = returncode
        self.signal = signal
        super().__init__(self._format())

    def _format(self) -> str:
        label = self.process_name or "process"
        tail = f": {self.errors[-1].strip()}" if self.errors else ""
        return f"{label} failed{tail}"


class ToolFailure(ProcessFailedError):
    """The tool exited on its own with a non-accepted exit code."""


class ExplicitTermination(ProcessFailedError):
    """The process was terminated by a signal (timeout, shutdown or crash)."""

    def __init__(
        self,
        process_name: str | None,
        errors: list[str],
        returncode: int | None = None,
        signal: _signal.Signals | None = None,
        timed_out: bool = False,
    ) -> None:
        self.timed_out = timed_out
        super().__init__(process_name, errors, returncode, signal)
