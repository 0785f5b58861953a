"""ProcessHandle: one launched process, its captured output and its outcome.

State machine::

    CREATED -> RUNNING -> SUCCEEDED | FAILED | TIMED_OUT -> CLOSED

Key design points:
- Every process runs in its own session/process group (POSIX) or process
  group (Windows), so a kill reaches the whole tree started by a shell line
- Output is read line by line from both streams, mirrored to the
  ToolLogger and routed into the result or error buffer by the LaunchSpec hooks
- A timeout kills the process group and appends a message to the errors
- The completion (``await handle.run()``) returns the result lines or
  raises ProcessFailedError carrying the error lines
- Cleanup is shielded from cancellation; a cancelled run() never leaks
  its child process
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..config import get_config
from ..logger import ToolLogger
from .channel import CHANNEL_ENV, ParentChannel
from .errors import ExplicitTermination, ToolFailure, UnsupportedModeError
from .outcome import ExitOutcome, classify, signal_from_returncode
from .spec import ExecSpec, ForkSpec, LaunchSpec, SpawnSpec

if TYPE_CHECKING:
    from .version import VersionController

__all__ = ["HandleState", "IS_WINDOWS", "KILL_SIGNAL", "ProcessHandle"]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# Windows has no SIGKILL; process.kill() there is TerminateProcess
KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


class HandleState(Enum):
    CREATED = "created"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


class ProcessHandle:
    """A launched process with captured output.

    Example:
        handle = ProcessHandle(
            ExecSpec(command_line="git status --short", cwd=repo, process_name="git"),
            tool_logger,
        )
        try:
            lines = await handle.run()
        except ProcessFailedError as e:
            report(e.errors)

    A handle runs once; calling run() again raises RuntimeError.
    """

    def __init__(
        self,
        spec: LaunchSpec,
        tool_logger: ToolLogger | None = None,
        *,
        version_check: VersionController | None = None,
        kill_timeout: float | None = None,
        drain_timeout: float | None = None,
        stream_limit: int | None = None,
    ) -> None:
        """Create a handle; nothing is started until run().

        Args:
            spec: Launch specification
            tool_logger: Receives every output line and kill/timeout event
            version_check: Awaited before launch to validate the tool version
            kill_timeout: Seconds to wait for exit after the kill signal
            drain_timeout: Seconds to wait for output readers after exit
            stream_limit: Maximum output line length in bytes

        Raises:
            UnsupportedModeError: Unknown spec type, or fork mode on Windows
        """
        if not isinstance(spec, (ExecSpec, SpawnSpec, ForkSpec)):
            raise UnsupportedModeError(f"Child process type {type(spec).__name__} is not supported.")
        if isinstance(spec, ForkSpec) and IS_WINDOWS:
            raise UnsupportedModeError("fork mode needs file descriptor passing, unavailable on Windows")

        config = get_config()
        self.spec = spec
        self.result: list[str] = []
        self.errors: list[str] = []
        self.process: asyncio.subprocess.Process | None = None
        self.explicit_kill = False
        self.timed_out = False

        self._logger = tool_logger or ToolLogger()
        self._version_check = version_check
        self._kill_timeout = config.kill_timeout if kill_timeout is None else kill_timeout
        self._drain_timeout = config.drain_timeout if drain_timeout is None else drain_timeout
        self._stream_limit = stream_limit or config.stream_limit

        self._state = HandleState.CREATED
        self._final_state: HandleState | None = None
        self._closed = asyncio.Event()
        self._kill_signal: signal.Signals | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._channel: ParentChannel | None = None
        self._hook_error: Exception | None = None

    @property
    def label(self) -> str:
        return self.spec.label

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def final_state(self) -> HandleState | None:
        """SUCCEEDED, FAILED or TIMED_OUT once the outcome is known."""
        return self._final_state

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> int | None:
        return self.process.returncode if self.process else None

    def __repr__(self) -> str:
        return f"ProcessHandle(name={self.label}, pid={self.pid}, state={self._state.value})"

    async def run(self) -> list[str]:
        """Launch the process and wait for its outcome.

        Returns:
            Result lines, in receipt order

        Raises:
            ToolFailure: Exit code outside the accepted set
            ExplicitTermination: Killed by signal, timeout or kill()
            OSError: The process could not be started
        """
        if self._state is not HandleState.CREATED:
            raise RuntimeError(f"{self!r} has already been run")
        # Reserve the handle before the first suspension point
        self._state = HandleState.RUNNING

        readers: list[asyncio.Task[None]] = []
        try:
            if self._version_check is not None:
                await self._version_check.check_support()

            await self._launch()

            if self.explicit_kill:
                # kill() arrived before the process existed
                self._send_kill()
            elif self.spec.timeout is not None:
                loop = asyncio.get_running_loop()
                self._timer = loop.call_later(self.spec.timeout, self._on_timeout)

            readers = self._start_readers()
            returncode = await self.process.wait()
            # The exit is observed; a late timer must not fire during the drain
            if self._timer is not None:
                self._timer.cancel()
            await self._drain(readers)

            return self._settle(returncode)

        except asyncio.CancelledError:
            logger.debug(f"{self!r} cancelled, killing process")
            self.explicit_kill = True
            self._final_state = HandleState.FAILED
            raise

        except BaseException:
            if self._final_state is None:
                self._final_state = HandleState.FAILED
            raise

        finally:
            if self._timer is not None:
                self._timer.cancel()
            await self._safe_cleanup(readers)
            self._state = HandleState.CLOSED
            self._closed.set()

    def kill(self, reason: str | None = None) -> None:
        """Kill the process; its outcome will be a failure even in force mode.

        Args:
            reason: Message appended to the error buffer
        """
        if self._state is HandleState.CLOSED:
            return
        self.explicit_kill = True
        if reason:
            self.errors.append(reason)
            self._logger.debug(reason, self.label)
        self._send_kill()

    async def wait_closed(self) -> None:
        """Wait until the exit has been observed and resources released."""
        await self._closed.wait()

    def send(self, message: Any) -> None:
        """Send a message to a forked worker.

        Raises:
            RuntimeError: Not a fork-mode handle, or the channel is closed
        """
        if self._channel is None:
            raise RuntimeError(f"{self!r} has no message channel (fork mode only)")
        self._channel.send(message)

    # =========================================================================
    # Launch
    # =========================================================================

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            # DEVNULL, not None: the parent's stdin is not ours to share
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "limit": self._stream_limit,
        }
        if self.spec.cwd is not None:
            kwargs["cwd"] = self.spec.cwd
        if self.spec.env is not None:
            kwargs["env"] = dict(self.spec.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def _launch(self) -> None:
        spec = self.spec
        kwargs = self._build_subprocess_kwargs()

        if isinstance(spec, ExecSpec):
            command = spec.shell_command()
            self._logger.debug(f"Executing: {command}", self.label)
            self.process = await asyncio.create_subprocess_shell(command, **kwargs)

        elif isinstance(spec, SpawnSpec):
            argv = spec.argv()
            self._logger.debug(f"Spawning: {' '.join(argv)}", self.label)
            self.process = await asyncio.create_subprocess_exec(*argv, **kwargs)

        else:
            argv = spec.argv()
            self._channel = ParentChannel(self._stream_limit)
            env = dict(spec.env if spec.env is not None else os.environ)
            env[CHANNEL_ENV] = self._channel.env_value
            kwargs["env"] = env
            kwargs["pass_fds"] = self._channel.child_fds
            self._logger.debug(f"Forking: {' '.join(argv)}", self.label)
            try:
                self.process = await asyncio.create_subprocess_exec(*argv, **kwargs)
            finally:
                self._channel.close_child_ends()
            await self._channel.attach()

        logger.debug(f"Started subprocess pid={self.process.pid} name={self.label}")

    # =========================================================================
    # Output
    # =========================================================================

    def _start_readers(self) -> list[asyncio.Task[None]]:
        hooks = self.spec.hooks
        readers = []
        if self.process.stdout is not None:
            readers.append(asyncio.create_task(self._read_stream(self.process.stdout, hooks.on_data)))
        if self.process.stderr is not None:
            readers.append(asyncio.create_task(self._read_stream(self.process.stderr, hooks.on_error)))
        if self._channel is not None:
            readers.append(asyncio.create_task(self._read_messages()))
        return readers

    async def _read_stream(self, stream: asyncio.StreamReader, hook) -> None:
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if self.spec.silent:
                self._logger.debug(line, self.label)
            else:
                self._logger.info(line, self.label)
            try:
                hook(line, self.result, self.errors)
            except Exception as e:
                # Keep draining so a full pipe never blocks the child
                logger.warning(f"{self!r}: output hook failed: {e}")
                if self._hook_error is None:
                    self._hook_error = e

    async def _read_messages(self) -> None:
        on_message = self.spec.hooks.on_message
        async for message in self._channel.messages():
            self._logger.debug(f"Message: {message}", self.label)
            if on_message is not None:
                on_message(message)

    async def _drain(self, readers: list[asyncio.Task[None]]) -> None:
        """Wait for readers to reach EOF, bounded by the drain timeout.

        Exceptions raised by output hooks propagate from here.
        """
        if not readers:
            return
        done, pending = await asyncio.wait(readers, timeout=self._drain_timeout)
        if pending:
            logger.debug(f"{self!r}: {len(pending)} reader(s) still open after exit")
            for task in pending:
                task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        if self._hook_error is not None:
            raise self._hook_error

    # =========================================================================
    # Outcome
    # =========================================================================

    def _on_timeout(self) -> None:
        message = (
            f"Process {self.label} has been terminated by timeout. "
            f"Timeout: {self.spec.timeout}s"
        )
        self._logger.error(message, self.label)
        self.errors.append(message)
        self.timed_out = True
        self._send_kill()

    def _settle(self, returncode: int) -> list[str]:
        observed = signal_from_returncode(returncode)
        term_signal = observed or self._kill_signal

        outcome = classify(
            returncode,
            term_signal,
            self.explicit_kill,
            self.spec.force,
            self.spec.accepted_exit_codes,
        )
        if outcome is ExitOutcome.SUCCESS:
            self._final_state = HandleState.SUCCEEDED
            return list(self.result)

        self._logger.debug(f"Exit code: {returncode}", self.label)

        if term_signal is not None or self.explicit_kill:
            self._final_state = HandleState.TIMED_OUT if self.timed_out else HandleState.FAILED
            if term_signal is not None and not self.timed_out:
                self.errors.append(f"Process {self.label} has been killed by {term_signal.name}")
            raise ExplicitTermination(
                self.spec.process_name,
                self.errors,
                returncode=returncode,
                signal=term_signal,
                timed_out=self.timed_out,
            )

        self._final_state = HandleState.FAILED
        self.errors.append(f"Exit code: {returncode}")
        raise ToolFailure(self.spec.process_name, self.errors, returncode=returncode)

    # =========================================================================
    # Termination
    # =========================================================================

    def _send_kill(self) -> None:
        process = self.process
        if process is None or process.returncode is not None:
            return

        self._kill_signal = KILL_SIGNAL
        pid = process.pid
        try:
            if IS_WINDOWS:
                process.kill()
                return
            try:
                pgid = os.getpgid(pid)
                os.killpg(pgid, KILL_SIGNAL)
                logger.debug(f"Sent {KILL_SIGNAL.name} to process group pgid={pgid}")
            except ProcessLookupError:
                pass
            except OSError as e:
                logger.debug(f"killpg failed, falling back to kill: {e}")
                process.kill()
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")

    async def _safe_cleanup(self, readers: list[asyncio.Task[None]]) -> None:
        try:
            await asyncio.shield(self._do_cleanup(readers))
        except asyncio.CancelledError:
            await self._do_cleanup(readers)

    async def _do_cleanup(self, readers: list[asyncio.Task[None]]) -> None:
        pending = [task for task in readers if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        process = self.process
        if process is not None and process.returncode is None:
            self.explicit_kill = True
            self._send_kill()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._kill_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={process.pid}")

        if self._channel is not None:
            self._channel.close()
