"""Runtime module for child process execution and orchestration.

This module provides launch specifications, process handles with output
capture and exit classification, and a registry for bulk shutdown.
"""

from __future__ import annotations

from .args import CommandLine, build_args, build_command_line, prepare_value
from .errors import (
    ConfigurationError,
    ExplicitTermination,
    ProcessError,
    ProcessFailedError,
    ToolFailure,
    UnsupportedModeError,
    VersionNotSupportedError,
)
from .handle import HandleState, ProcessHandle
from .outcome import (
    DEFAULT_ACCEPTED_EXIT_CODES,
    LEGACY_ACCEPTED_EXIT_CODES,
    ExitOutcome,
    classify,
)
from .registry import ProcessRegistry
from .spec import (
    ExecSpec,
    ForkSpec,
    LaunchMode,
    OutputHooks,
    SpawnSpec,
    error_filter_hook,
    error_label_hook,
    make_spec,
)

__all__ = [
    "CommandLine",
    "ConfigurationError",
    "DEFAULT_ACCEPTED_EXIT_CODES",
    "ExecSpec",
    "ExitOutcome",
    "ExplicitTermination",
    "ForkSpec",
    "HandleState",
    "LEGACY_ACCEPTED_EXIT_CODES",
    "LaunchMode",
    "OutputHooks",
    "ProcessError",
    "ProcessFailedError",
    "ProcessHandle",
    "ProcessRegistry",
    "SpawnSpec",
    "ToolFailure",
    "UnsupportedModeError",
    "VersionNotSupportedError",
    "build_args",
    "build_command_line",
    "classify",
    "error_filter_hook",
    "error_label_hook",
    "make_spec",
    "prepare_value",
]
