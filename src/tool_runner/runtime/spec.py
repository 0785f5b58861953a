"""Launch specifications.

One frozen dataclass per launch mode:

- ExecSpec: a single shell command line (pipes and redirection allowed)
- SpawnSpec: a binary with an explicit argv, no shell
- ForkSpec: a Python module or script run by the current interpreter, with
  a bidirectional message channel to the parent

Shared options (working directory, timeout, force mode, output hooks...)
live on the LaunchOptions base.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .args import CommandLine, build_args, build_command_line
from .errors import ConfigurationError, UnsupportedModeError
from .outcome import DEFAULT_ACCEPTED_EXIT_CODES

__all__ = [
    "ExecSpec",
    "ForkSpec",
    "LaunchMode",
    "LaunchOptions",
    "LaunchSpec",
    "LineHook",
    "MessageHook",
    "OutputHooks",
    "SpawnSpec",
    "default_on_data",
    "default_on_error",
    "error_filter_hook",
    "error_label_hook",
    "make_spec",
]

# (line, result, errors) -> None
LineHook = Callable[[str, list[str], list[str]], None]
MessageHook = Callable[[Any], None]


class LaunchMode(Enum):
    EXEC = "exec"
    SPAWN = "spawn"
    FORK = "fork"

    @classmethod
    def from_string(cls, value: str) -> "LaunchMode":
        """Parse a mode name.

        Raises:
            UnsupportedModeError: Unknown mode name
        """
        normalized = value.lower().strip()
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise UnsupportedModeError(f"Child process type {value} is not supported.")


def default_on_data(line: str, result: list[str], errors: list[str]) -> None:
    result.append(line)


def default_on_error(line: str, result: list[str], errors: list[str]) -> None:
    errors.append(line)


def error_label_hook(label: str) -> LineHook:
    """stdout hook: lines containing label are errors, the rest are results."""

    def on_data(line: str, result: list[str], errors: list[str]) -> None:
        if label in line:
            errors.append(line)
        else:
            result.append(line)

    return on_data


def error_filter_hook(predicate: Callable[[str], bool]) -> LineHook:
    """stderr hook: keep only lines accepted by predicate."""

    def on_error(line: str, result: list[str], errors: list[str]) -> None:
        if predicate(line):
            errors.append(line)

    return on_error


@dataclass(frozen=True)
class OutputHooks:
    """Output classifiers.

    Attributes:
        on_data: Called for each stdout line
        on_error: Called for each stderr line
        on_message: Called for each channel message (fork mode only)
    """

    on_data: LineHook = default_on_data
    on_error: LineHook = default_on_error
    on_message: MessageHook | None = None


@dataclass(frozen=True, kw_only=True)
class LaunchOptions:
    """Options shared by every launch mode.

    Attributes:
        cwd: Working directory (None = current directory)
        env: Environment variables (None = inherit parent)
        process_name: Label used in logs and error messages
        silent: Log output at debug instead of info level
        force: Best-effort mode, non-zero exit codes count as success
        timeout: Seconds before the process is killed (None = no limit)
        accepted_exit_codes: Exit codes treated as success
        hooks: Output classifiers
    """

    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    process_name: str | None = None
    silent: bool = False
    force: bool = False
    timeout: float | None = None
    accepted_exit_codes: Collection[int] = DEFAULT_ACCEPTED_EXIT_CODES
    hooks: OutputHooks = field(default_factory=OutputHooks)

    mode = LaunchMode.EXEC

    @property
    def label(self) -> str:
        return self.process_name or self.mode.value

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")


@dataclass(frozen=True, kw_only=True)
class ExecSpec(LaunchOptions):
    """Shell command line.

    Exactly one of command_line (raw shell syntax) or command (structured)
    must be given.
    """

    command_line: str | None = None
    command: CommandLine | None = None

    mode = LaunchMode.EXEC

    def __post_init__(self) -> None:
        super().__post_init__()
        if (self.command_line is None) == (self.command is None):
            raise ConfigurationError("ExecSpec needs exactly one of command_line or command")

    def shell_command(self) -> str:
        if self.command_line is not None:
            return self.command_line
        return build_command_line(self.command)


@dataclass(frozen=True, kw_only=True)
class SpawnSpec(LaunchOptions):
    """Binary with an explicit argv."""

    command: CommandLine

    mode = LaunchMode.SPAWN

    def argv(self) -> list[str]:
        return self.command.tokens(quote=False)


@dataclass(frozen=True, kw_only=True)
class ForkSpec(LaunchOptions):
    """Python module or script run by the current interpreter.

    Attributes:
        target: Module name (run with ``-m``) or path to a ``.py`` script
        args: Ordered argument map passed to the target
        env_args: Ordered argument map passed to the interpreter
        assignment_operator: Joins flag names and values
        interpreter: Python executable (default: the running one)
    """

    target: str
    args: Mapping[str, Any] = field(default_factory=dict)
    env_args: Mapping[str, Any] = field(default_factory=dict)
    assignment_operator: str = "="
    interpreter: str = sys.executable

    mode = LaunchMode.FORK

    @property
    def is_script(self) -> bool:
        return self.target.endswith(".py") or "/" in self.target or "\\" in self.target

    def argv(self) -> list[str]:
        line = [self.interpreter]
        line.extend(build_args(self.env_args, self.assignment_operator, short_flags=True, quote=False))
        if self.is_script:
            line.append(self.target)
        else:
            line.extend(["-m", self.target])
        line.extend(build_args(self.args, self.assignment_operator, quote=False))
        return line


LaunchSpec = ExecSpec | SpawnSpec | ForkSpec


def _coerce_command(command_line: str | CommandLine | Mapping[str, Any]) -> CommandLine:
    if isinstance(command_line, CommandLine):
        return command_line
    if isinstance(command_line, str):
        raise ConfigurationError("spawn mode needs a structured command line, not a string")
    return CommandLine(**command_line)


def make_spec(
    mode: str | LaunchMode = LaunchMode.EXEC,
    command_line: str | CommandLine | Mapping[str, Any] | None = None,
    **options: Any,
) -> LaunchSpec:
    """Build the LaunchSpec variant for mode.

    Args:
        mode: "exec", "spawn" or "fork"
        command_line: Shell string or structured command (exec/spawn);
            module or script name (fork)
        **options: LaunchOptions fields and mode-specific fields

    Raises:
        UnsupportedModeError: Unknown mode
        ConfigurationError: Fields invalid for the mode
    """
    if isinstance(mode, str):
        mode = LaunchMode.from_string(mode)

    try:
        if mode is LaunchMode.EXEC:
            if isinstance(command_line, str):
                return ExecSpec(command_line=command_line, **options)
            return ExecSpec(command=_coerce_command(command_line or {}), **options)

        if mode is LaunchMode.SPAWN:
            return SpawnSpec(command=_coerce_command(command_line or {}), **options)

        if not isinstance(command_line, str):
            raise ConfigurationError("fork mode needs a module or script name")
        return ForkSpec(target=command_line, **options)
    except TypeError as e:
        raise ConfigurationError(f"invalid options for {mode.value} mode: {e}") from e
