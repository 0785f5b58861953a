"""Conversion of structured argument maps into command-line tokens.

Argument maps are ordinary ordered mappings::

    {"opt#0": "src/file.py", "fix": True, "ext": [".js", ".ts"], "cache": None}

produce::

    ["src/file.py", "--fix", "--ext=.js", "--ext=.ts"]
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "CommandLine",
    "POSITIONAL_PREFIX",
    "build_args",
    "build_command_line",
    "prepare_value",
]

# Names with this prefix are emitted as bare positional values
POSITIONAL_PREFIX = "opt#"


def prepare_value(value: Any) -> str:
    """Return the string form of value, double-quoted if it contains whitespace."""
    text = str(value)
    return f'"{text}"' if any(char.isspace() for char in text) else text


def build_args(
    args: Mapping[str, Any] | None,
    assignment_operator: str = "=",
    short_flags: bool = False,
    quote: bool = True,
) -> list[str]:
    """Build command-line tokens from an ordered argument map.

    Args:
        args: Argument map; iteration order is kept
        assignment_operator: Joins a flag name and its value (``=`` or `` ``)
        short_flags: Use a single dash for one-character names
        quote: Quote values containing spaces (off for an argv without shell)

    Returns:
        List of tokens
    """
    result: list[str] = []
    fmt = prepare_value if quote else str

    for name, value in (args or {}).items():
        if name.startswith(POSITIONAL_PREFIX):
            result.append(fmt(value))
            continue

        # False, None, 0 and empty values are omitted
        if not value:
            continue

        flag = f"{'-' if short_flags and len(name) == 1 else '--'}{name}"

        if value is True:
            result.append(flag)
            continue

        items = value if isinstance(value, (list, tuple)) else [value]
        for item in items:
            # Without a shell to split on whitespace, "--name value" is two argv entries
            if not quote and assignment_operator.isspace():
                result.extend([flag, fmt(item)])
            else:
                result.append(f"{flag}{assignment_operator}{fmt(item)}")

    return result


@dataclass(frozen=True)
class CommandLine:
    """Structured command line.

    Attributes:
        binary: Environment binary (interpreter or tool), e.g. ``node``
        executable: Script or file run by the binary
        command: Command verb placed before the arguments
        args: Ordered argument map for the command
        env_args: Ordered argument map for the environment binary
        assignment_operator: Joins flag names and values
    """

    binary: str = "node"
    executable: str = ""
    command: str = ""
    args: Mapping[str, Any] = field(default_factory=dict)
    env_args: Mapping[str, Any] = field(default_factory=dict)
    assignment_operator: str = "="

    def tokens(self, quote: bool = True) -> list[str]:
        line = [self.binary]
        line.extend(build_args(self.env_args, self.assignment_operator, quote=quote))
        if self.executable:
            line.append(prepare_value(self.executable) if quote else self.executable)
        if self.command:
            line.append(self.command)
        line.extend(build_args(self.args, self.assignment_operator, quote=quote))
        return line


def build_command_line(
    spec: str | CommandLine | Mapping[str, Any],
    as_list: bool = False,
) -> str | list[str]:
    """Compose a command line.

    A plain string is already shell syntax and is returned unchanged.
    A CommandLine (or a mapping with its field names) is composed as
    ``[binary, *env_args, executable, command, *args]``.

    Args:
        spec: Command line string, CommandLine or mapping
        as_list: Return the token list instead of a joined string
    """
    if isinstance(spec, str):
        return spec

    if not isinstance(spec, CommandLine):
        spec = CommandLine(**spec)

    line = spec.tokens()
    return line if as_list else " ".join(line)
