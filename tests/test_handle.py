"""ProcessHandle tests with real child processes.

These spawn /bin/sh, so the whole module is POSIX-only.
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
from pathlib import Path
from unittest import mock

import pytest

from tool_runner.logger import ToolLogger
from tool_runner.runtime.args import CommandLine
from tool_runner.runtime.errors import (
    ExplicitTermination,
    ProcessFailedError,
    ToolFailure,
    UnsupportedModeError,
)
from tool_runner.runtime.handle import IS_WINDOWS, HandleState, ProcessHandle
from tool_runner.runtime.outcome import LEGACY_ACCEPTED_EXIT_CODES
from tool_runner.runtime.spec import (
    ExecSpec,
    ForkSpec,
    OutputHooks,
    SpawnSpec,
    error_filter_hook,
    error_label_hook,
)

SRC_DIR = Path(__file__).parent.parent / "src"
WORKERS_DIR = Path(__file__).parent / "workers"

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX shell required")


async def wait_started(handle: ProcessHandle) -> None:
    for _ in range(250):
        if handle.process is not None:
            return
        await asyncio.sleep(0.02)
    raise AssertionError(f"{handle!r} never started")


def exec_handle(command_line: str, **options) -> ProcessHandle:
    return ProcessHandle(ExecSpec(command_line=command_line, **options), kill_timeout=2.0)


class TestExecMode:
    """Shell command lines."""

    @pytest.mark.asyncio
    async def test_success_returns_stdout_lines(self):
        handle = exec_handle("echo hello; echo world")

        result = await handle.run()

        assert result == ["hello", "world"]
        assert handle.errors == []
        assert handle.final_state is HandleState.SUCCEEDED
        assert handle.state is HandleState.CLOSED
        assert handle.returncode == 0

    @pytest.mark.asyncio
    async def test_stderr_goes_to_errors(self):
        handle = exec_handle("echo out; echo err >&2")

        result = await handle.run()

        assert result == ["out"]
        assert handle.errors == ["err"]

    @pytest.mark.asyncio
    async def test_pipes_are_supported(self):
        handle = exec_handle("printf 'b\\na\\n' | sort")

        assert await handle.run() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_structured_command(self):
        spec = ExecSpec(command=CommandLine(binary="echo", args={"opt#0": "two words"}))

        assert await ProcessHandle(spec).run() == ["two words"]

    @pytest.mark.asyncio
    async def test_failure_raises_with_errors(self):
        handle = exec_handle("echo broken >&2; exit 3", process_name="build")

        with pytest.raises(ToolFailure) as exc_info:
            await handle.run()

        error = exc_info.value
        assert error.process_name == "build"
        assert error.returncode == 3
        assert error.errors == ["broken", "Exit code: 3"]
        assert error.errors is handle.errors
        assert str(error) == "build failed: Exit code: 3"
        assert handle.final_state is HandleState.FAILED

    @pytest.mark.asyncio
    async def test_force_mode_resolves_on_failure(self):
        handle = exec_handle("echo partial; echo warn >&2; exit 3", force=True)

        result = await handle.run()

        assert result == ["partial"]
        assert handle.errors == ["warn"]
        assert handle.final_state is HandleState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_accepted_exit_codes(self):
        with pytest.raises(ToolFailure):
            await exec_handle("exit 6").run()

        handle = exec_handle("exit 6", accepted_exit_codes=LEGACY_ACCEPTED_EXIT_CODES)
        assert await handle.run() == []

    @pytest.mark.asyncio
    async def test_cwd(self, temp_workspace: Path):
        result = await exec_handle("pwd", cwd=temp_workspace).run()

        assert Path(result[0]).resolve() == temp_workspace.resolve()

    @pytest.mark.asyncio
    async def test_env_replaces_parent_environment(self):
        env = {"PATH": os.environ.get("PATH", "/usr/bin:/bin"), "TOOL_MARKER": "yes"}

        result = await exec_handle('echo "$TOOL_MARKER"', env=env).run()

        assert result == ["yes"]

    @pytest.mark.asyncio
    async def test_crlf_is_stripped(self):
        result = await exec_handle("printf 'one\\r\\ntwo\\n'").run()

        assert result == ["one", "two"]

    @pytest.mark.asyncio
    async def test_run_twice_raises(self):
        handle = exec_handle("true")
        await handle.run()

        with pytest.raises(RuntimeError):
            await handle.run()


class TestHooks:
    @pytest.mark.asyncio
    async def test_error_label_hook(self):
        spec = ExecSpec(
            command_line="echo ok; echo 'ERROR: bad input'",
            hooks=OutputHooks(on_data=error_label_hook("ERROR:")),
        )
        handle = ProcessHandle(spec)

        assert await handle.run() == ["ok"]
        assert handle.errors == ["ERROR: bad input"]

    @pytest.mark.asyncio
    async def test_error_filter_hook(self):
        spec = ExecSpec(
            command_line="echo 'warn: slow' >&2; echo 'fatal: missing' >&2",
            hooks=OutputHooks(on_error=error_filter_hook(lambda line: line.startswith("fatal"))),
        )
        handle = ProcessHandle(spec)

        await handle.run()

        assert handle.errors == ["fatal: missing"]

    @pytest.mark.asyncio
    async def test_hook_exception_propagates_after_drain(self):
        seen: list[str] = []

        def on_data(line, result, errors):
            seen.append(line)
            if line == "2":
                raise ValueError("bad line")

        spec = ExecSpec(command_line="seq 1 5", hooks=OutputHooks(on_data=on_data))

        with pytest.raises(ValueError, match="bad line"):
            await ProcessHandle(spec).run()

        assert seen == ["1", "2", "3", "4", "5"]


class TestLogging:
    @pytest.mark.asyncio
    async def test_output_is_logged_at_info(self):
        tool_logger = mock.MagicMock(spec=ToolLogger)
        spec = ExecSpec(command_line="echo hello", process_name="greeter")

        await ProcessHandle(spec, tool_logger).run()

        tool_logger.info.assert_any_call("hello", "greeter")

    @pytest.mark.asyncio
    async def test_silent_output_is_logged_at_debug(self):
        tool_logger = mock.MagicMock(spec=ToolLogger)
        spec = ExecSpec(command_line="echo hello", process_name="greeter", silent=True)

        await ProcessHandle(spec, tool_logger).run()

        tool_logger.debug.assert_any_call("hello", "greeter")
        assert mock.call("hello", "greeter") not in tool_logger.info.call_args_list

    @pytest.mark.asyncio
    async def test_timeout_is_logged_as_error(self):
        tool_logger = mock.MagicMock(spec=ToolLogger)
        spec = ExecSpec(command_line="sleep 30", process_name="sleeper", timeout=0.2)

        with pytest.raises(ExplicitTermination):
            await ProcessHandle(spec, tool_logger, kill_timeout=2.0).run()

        message = tool_logger.error.call_args.args[0]
        assert "terminated by timeout" in message


class TestTimeout:
    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_timeout_kills_process(self):
        handle = exec_handle("sleep 30", process_name="sleeper", timeout=0.3)
        started = time.monotonic()

        with pytest.raises(ExplicitTermination) as exc_info:
            await handle.run()

        assert time.monotonic() - started < 5
        assert exc_info.value.timed_out
        assert handle.final_state is HandleState.TIMED_OUT
        assert handle.errors == [
            "Process sleeper has been terminated by timeout. Timeout: 0.3s"
        ]

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_timeout_fails_in_force_mode(self):
        handle = exec_handle("sleep 30", timeout=0.3, force=True)

        with pytest.raises(ExplicitTermination):
            await handle.run()

        assert handle.final_state is HandleState.TIMED_OUT

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_timeout_kills_whole_pipeline(self):
        handle = exec_handle("sleep 30 | cat", timeout=0.3)
        started = time.monotonic()

        with pytest.raises(ExplicitTermination):
            await handle.run()

        assert time.monotonic() - started < 5

    @pytest.mark.asyncio
    async def test_timer_is_cleared_on_exit(self):
        handle = exec_handle("echo fast", timeout=5)

        assert await handle.run() == ["fast"]
        assert not handle.timed_out
        assert handle._timer.cancelled()

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_timer_does_not_fire_while_draining(self):
        """A background child holding stdout open outlives the timeout."""
        tool_logger = mock.MagicMock(spec=ToolLogger)
        spec = ExecSpec(
            command_line="(sleep 1.5; echo late) & echo hi; exit 0",
            process_name="quick",
            timeout=0.5,
        )
        handle = ProcessHandle(spec, tool_logger, drain_timeout=5.0)

        result = await handle.run()

        assert result == ["hi", "late"]
        assert handle.errors == []
        assert not handle.timed_out
        assert handle.final_state is HandleState.SUCCEEDED
        tool_logger.error.assert_not_called()


class TestCrash:
    @pytest.mark.asyncio
    async def test_crash_signal_fails(self):
        handle = exec_handle("kill -SEGV $$", process_name="crasher")

        with pytest.raises(ExplicitTermination) as exc_info:
            await handle.run()

        assert exc_info.value.signal is signal.SIGSEGV
        assert not exc_info.value.timed_out
        assert handle.errors == ["Process crasher has been killed by SIGSEGV"]
        assert handle.final_state is HandleState.FAILED

    @pytest.mark.asyncio
    async def test_crash_signal_in_force_mode(self):
        handle = exec_handle("echo partial; kill -ABRT $$", force=True)

        assert await handle.run() == ["partial"]


class TestKill:
    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_kill_running_process(self):
        handle = exec_handle("sleep 30", process_name="sleeper")
        task = asyncio.create_task(handle.run())
        await wait_started(handle)

        handle.kill("stopped by test")

        with pytest.raises(ExplicitTermination) as exc_info:
            await task
        assert not exc_info.value.timed_out
        assert handle.errors[0] == "stopped by test"
        assert any("killed by" in line for line in handle.errors)
        assert handle.final_state is HandleState.FAILED

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_kill_beats_force(self):
        handle = exec_handle("sleep 30", force=True)
        task = asyncio.create_task(handle.run())
        await wait_started(handle)

        handle.kill()

        with pytest.raises(ExplicitTermination):
            await task

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_kill_before_launch(self):
        handle = exec_handle("sleep 30")

        handle.kill("early")

        with pytest.raises(ExplicitTermination):
            await handle.run()
        assert handle.errors[0] == "early"

    @pytest.mark.asyncio
    async def test_kill_after_close_is_ignored(self):
        handle = exec_handle("true")
        await handle.run()

        handle.kill("late")

        assert handle.errors == []
        assert not handle.explicit_kill

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_cancel_kills_child(self):
        handle = exec_handle("sleep 30")
        task = asyncio.create_task(handle.run())
        await wait_started(handle)

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert handle.returncode is not None
        assert handle.state is HandleState.CLOSED
        assert handle.final_state is HandleState.FAILED

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_wait_closed(self):
        handle = exec_handle("sleep 30")
        task = asyncio.create_task(handle.run())
        await wait_started(handle)

        handle.kill()
        await handle.wait_closed()

        assert handle.state is HandleState.CLOSED
        with pytest.raises(ProcessFailedError):
            await task


class TestSpawnMode:
    @pytest.mark.asyncio
    async def test_argv_is_passed_without_shell(self):
        command = CommandLine(binary="sh", args={"opt#0": "-c", "opt#1": "echo spawned with spaces"})
        handle = ProcessHandle(SpawnSpec(command=command))

        assert await handle.run() == ["spawned with spaces"]

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        handle = ProcessHandle(SpawnSpec(command=CommandLine(binary="no-such-tool-xyz")))

        with pytest.raises(FileNotFoundError):
            await handle.run()
        assert handle.final_state is HandleState.FAILED
        assert handle.state is HandleState.CLOSED


class TestForkMode:
    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_message_round_trip(self):
        messages = []
        handle: ProcessHandle

        def on_message(message):
            messages.append(message)
            if message["type"] == "ready":
                handle.send({"n": 1})
            else:
                handle.send({"type": "stop"})

        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC_DIR), env.get("PYTHONPATH")]))
        spec = ForkSpec(
            target=str(WORKERS_DIR / "echo_worker.py"),
            env=env,
            hooks=OutputHooks(on_message=on_message),
        )
        handle = ProcessHandle(spec)

        result = await handle.run()

        assert messages == [{"type": "ready"}, {"type": "echo", "payload": {"n": 1}}]
        assert result == ["worker done"]

    @pytest.mark.asyncio
    async def test_send_requires_fork_mode(self):
        handle = exec_handle("true")

        with pytest.raises(RuntimeError):
            handle.send({"type": "ping"})


class TestConstruction:
    def test_unknown_spec_type(self):
        with pytest.raises(UnsupportedModeError):
            ProcessHandle(object())  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_initial_state(self):
        handle = exec_handle("true", process_name="noop")

        assert handle.state is HandleState.CREATED
        assert handle.final_state is None
        assert handle.pid is None
        assert handle.label == "noop"
        assert "noop" in repr(handle)
