"""Launch presets for the external tools wrapped by the CLI.

Each preset builds a SpawnSpec for its binary and carries a module-level
VersionController; pass ``version_check=preset.versions`` to
ProcessHandle/ProcessRegistry.launch to gate the launch on the installed
version.
"""

from __future__ import annotations

import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .runtime.args import CommandLine
from .runtime.spec import SpawnSpec
from .runtime.version import VersionController

__all__ = ["GIT", "NODE", "NPM", "PYTHON", "ToolPreset"]


@dataclass(frozen=True)
class ToolPreset:
    """Binary-specific defaults for structured command lines.

    Attributes:
        binary: Executable name
        versions: Supported version range
        assignment_operator: Joins flag names and values
        env_args: Arguments always passed to the binary before the command
    """

    binary: str
    versions: VersionController
    assignment_operator: str = "="
    env_args: Mapping[str, Any] = field(default_factory=dict)

    def command(
        self,
        command: str = "",
        args: Mapping[str, Any] | None = None,
        executable: str = "",
        env_args: Mapping[str, Any] | None = None,
    ) -> CommandLine:
        return CommandLine(
            binary=self.binary,
            executable=executable,
            command=command,
            args=dict(args or {}),
            env_args={**self.env_args, **(env_args or {})},
            assignment_operator=self.assignment_operator,
        )

    def spec(
        self,
        command: str = "",
        args: Mapping[str, Any] | None = None,
        executable: str = "",
        env_args: Mapping[str, Any] | None = None,
        **options: Any,
    ) -> SpawnSpec:
        """Build a SpawnSpec; options are LaunchOptions fields."""
        options.setdefault("process_name", self.binary)
        return SpawnSpec(command=self.command(command, args, executable, env_args), **options)


_PYTHON_BINARY = "python" if sys.platform == "win32" else "python3"

GIT = ToolPreset(
    binary="git",
    versions=VersionController(
        name="Git",
        binary="git",
        lower="2.30",
        upper="2",
        install_link="https://git-scm.com/downloads",
    ),
    assignment_operator=" ",
    env_args={"no-pager": True},
)

NODE = ToolPreset(
    binary="node",
    versions=VersionController(
        name="Node.JS",
        binary="node",
        lower="16",
        upper="22",
        install_link="https://nodejs.org/en/download/releases",
    ),
)

NPM = ToolPreset(
    binary="npm",
    versions=VersionController(
        name="npm",
        binary="npm",
        lower="8",
        upper="10",
        install_link="https://www.npmjs.com/package/npm?activeTab=versions",
    ),
)

PYTHON = ToolPreset(
    binary=_PYTHON_BINARY,
    versions=VersionController(
        name="Python",
        binary=_PYTHON_BINARY,
        lower="3.10",
        upper="3",
        install_link="https://www.python.org/downloads/",
    ),
)
