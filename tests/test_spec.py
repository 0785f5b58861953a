"""Launch specification tests."""

from __future__ import annotations

import dataclasses
import sys
from pathlib import Path

import pytest

from tool_runner.runtime.args import CommandLine
from tool_runner.runtime.errors import ConfigurationError, UnsupportedModeError
from tool_runner.runtime.spec import (
    ExecSpec,
    ForkSpec,
    LaunchMode,
    OutputHooks,
    SpawnSpec,
    default_on_data,
    default_on_error,
    error_filter_hook,
    error_label_hook,
    make_spec,
)


class TestLaunchMode:
    def test_from_string(self):
        assert LaunchMode.from_string("exec") is LaunchMode.EXEC
        assert LaunchMode.from_string(" SPAWN ") is LaunchMode.SPAWN
        assert LaunchMode.from_string("Fork") is LaunchMode.FORK

    def test_unknown_mode(self):
        with pytest.raises(UnsupportedModeError, match="thread"):
            LaunchMode.from_string("thread")


class TestExecSpec:
    def test_raw_command_line(self):
        spec = ExecSpec(command_line="echo hi | cat")

        assert spec.shell_command() == "echo hi | cat"
        assert spec.mode is LaunchMode.EXEC

    def test_structured_command(self):
        spec = ExecSpec(command=CommandLine(binary="git", command="status", args={"short": True}))

        assert spec.shell_command() == "git status --short"

    def test_needs_exactly_one_command(self):
        with pytest.raises(ConfigurationError):
            ExecSpec()
        with pytest.raises(ConfigurationError):
            ExecSpec(command_line="ls", command=CommandLine(binary="ls"))

    def test_frozen(self):
        spec = ExecSpec(command_line="ls")

        with pytest.raises(dataclasses.FrozenInstanceError):
            spec.timeout = 3  # type: ignore

    def test_defaults(self):
        spec = ExecSpec(command_line="ls")

        assert spec.cwd is None
        assert spec.env is None
        assert spec.timeout is None
        assert spec.force is False
        assert spec.silent is False
        assert set(spec.accepted_exit_codes) == {0}
        assert spec.hooks.on_data is default_on_data
        assert spec.hooks.on_error is default_on_error
        assert spec.hooks.on_message is None

    def test_label(self):
        assert ExecSpec(command_line="ls").label == "exec"
        assert ExecSpec(command_line="ls", process_name="lister").label == "lister"

    @pytest.mark.parametrize("timeout", [0, -1])
    def test_non_positive_timeout(self, timeout):
        with pytest.raises(ConfigurationError, match="timeout"):
            ExecSpec(command_line="ls", timeout=timeout)


class TestSpawnSpec:
    def test_argv_is_not_quoted(self):
        spec = SpawnSpec(
            command=CommandLine(binary="sh", args={"opt#0": "-c", "opt#1": "echo a b"})
        )

        assert spec.argv() == ["sh", "-c", "echo a b"]


class TestForkSpec:
    def test_module_target(self):
        spec = ForkSpec(target="workers.tests", args={"shard": 2}, interpreter="py")

        assert spec.argv() == ["py", "-m", "workers.tests", "--shard=2"]

    def test_script_target_with_interpreter_args(self):
        spec = ForkSpec(target="tools/worker.py", env_args={"u": True}, interpreter="py")

        assert spec.is_script
        assert spec.argv() == ["py", "-u", "tools/worker.py"]

    def test_default_interpreter(self):
        assert ForkSpec(target="pkg.worker").argv()[0] == sys.executable


class TestMakeSpec:
    def test_exec_from_string(self):
        spec = make_spec("exec", "ls -la", cwd=Path("/tmp"), process_name="ls")

        assert isinstance(spec, ExecSpec)
        assert spec.command_line == "ls -la"
        assert spec.process_name == "ls"

    def test_spawn_from_mapping(self):
        spec = make_spec(LaunchMode.SPAWN, {"binary": "git", "command": "fetch"})

        assert isinstance(spec, SpawnSpec)
        assert spec.argv() == ["git", "fetch"]

    def test_spawn_rejects_string(self):
        with pytest.raises(ConfigurationError):
            make_spec("spawn", "git fetch")

    def test_fork(self):
        spec = make_spec("fork", "pkg.worker", timeout=5)

        assert isinstance(spec, ForkSpec)
        assert spec.timeout == 5

    def test_unknown_mode(self):
        with pytest.raises(UnsupportedModeError):
            make_spec("daemon", "ls")

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError, match="exec"):
            make_spec("exec", "ls", retries=3)


class TestHooks:
    def test_error_label_hook(self):
        hook = error_label_hook("[ERROR]")
        result: list[str] = []
        errors: list[str] = []

        hook("compiled 3 files", result, errors)
        hook("[ERROR] missing module", result, errors)

        assert result == ["compiled 3 files"]
        assert errors == ["[ERROR] missing module"]

    def test_error_filter_hook(self):
        hook = error_filter_hook(lambda line: "deprecated" not in line)
        result: list[str] = []
        errors: list[str] = []

        hook("warning: deprecated option", result, errors)
        hook("fatal: not a git repository", result, errors)

        assert result == []
        assert errors == ["fatal: not a git repository"]

    def test_output_hooks_override(self):
        hooks = OutputHooks(on_data=error_label_hook("x"))

        assert hooks.on_error is default_on_error
