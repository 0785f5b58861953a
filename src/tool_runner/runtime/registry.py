"""Registry of launched processes.

Provides:
- execute()/spawn()/fork()/launch(): start a ProcessHandle and track it
  until its exit is observed
- get_errors_by_name(): error buffer of the last process with a given name
- close_child_process(): kill every live process (the single shutdown path)

All methods are called from the event loop thread; no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from ..logger import ToolLogger
from .args import CommandLine
from .errors import ConfigurationError
from .handle import ProcessHandle
from .spec import LaunchMode, LaunchSpec, make_spec

__all__ = ["ProcessRegistry"]

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Tracks live ProcessHandles for named error lookup and bulk shutdown.

    Example:
        registry = ProcessRegistry(tool_logger)

        try:
            await registry.execute("npm run build", repo_dir, process_name="build")
        except ProcessFailedError:
            report(registry.get_errors_by_name("build"))

        # On interrupt
        await registry.close_child_process()
    """

    def __init__(self, tool_logger: ToolLogger | None = None) -> None:
        self._logger = tool_logger or ToolLogger()
        self._live: dict[ProcessHandle, asyncio.Task[list[str]]] = {}
        self._errors: dict[str | None, list[str]] = {}

    def execute(
        self,
        command_line: str | CommandLine | Mapping[str, Any],
        cwd: str | Path | None = None,
        **params: Any,
    ) -> asyncio.Task[list[str]]:
        """Run a shell command line.

        Args:
            command_line: Shell string, or a structured command line
            cwd: Working directory (must exist)
            **params: LaunchOptions fields (process_name, timeout, force...)

        Returns:
            Task resolving to the result lines

        Raises:
            ConfigurationError: cwd does not exist (raised before launch)
        """
        cwd = self._check_cwd(cwd)
        spec = make_spec(LaunchMode.EXEC, command_line, cwd=cwd, **params)
        return self.launch(spec)

    def spawn(
        self,
        command_line: CommandLine | Mapping[str, Any],
        cwd: str | Path | None = None,
        **params: Any,
    ) -> asyncio.Task[list[str]]:
        """Run a binary with an explicit argv (no shell).

        With a timeout, the task settles within timeout plus the kill and
        drain timeouts.
        """
        cwd = self._check_cwd(cwd)
        spec = make_spec(LaunchMode.SPAWN, command_line, cwd=cwd, **params)
        return self.launch(spec)

    def fork(
        self,
        target: str,
        cwd: str | Path | None = None,
        **params: Any,
    ) -> asyncio.Task[list[str]]:
        """Run a Python module or script with a message channel."""
        cwd = self._check_cwd(cwd)
        spec = make_spec(LaunchMode.FORK, target, cwd=cwd, **params)
        return self.launch(spec)

    def launch(self, spec: LaunchSpec, **handle_options: Any) -> asyncio.Task[list[str]]:
        """Track and start a handle for a prebuilt spec.

        Must be called from a running event loop.
        """
        handle = ProcessHandle(spec, self._logger, **handle_options)
        task = asyncio.create_task(handle.run(), name=f"process:{handle.label}")

        self._errors[spec.process_name] = handle.errors
        self._live[handle] = task
        task.add_done_callback(lambda _: self._live.pop(handle, None))

        logger.debug(f"Registered {handle!r}, live={len(self._live)}")
        return task

    def get_errors_by_name(self, name: str | None) -> list[str] | None:
        """Error buffer of the most recent process launched under name."""
        return self._errors.get(name)

    async def close_child_process(self) -> None:
        """Kill every live process and wait for each to close.

        Killed processes fail even in force mode. No-op when nothing is live.
        """
        if not self._live:
            return

        live = list(self._live.items())
        logger.info(f"Closing {len(live)} child process(es)")

        for handle, _ in live:
            handle.kill(f"Process {handle.label} has been killed by shutdown")

        # Settled tasks are the close confirmation; their failures are expected
        await asyncio.gather(*(task for _, task in live), return_exceptions=True)
        # Handles launched during the gather stay live
        for handle, _ in live:
            self._live.pop(handle, None)

    @property
    def live_count(self) -> int:
        return len(self._live)

    def list_live(self) -> list[ProcessHandle]:
        return list(self._live)

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, handle: object) -> bool:
        return handle in self._live

    @staticmethod
    def _check_cwd(cwd: str | Path | None) -> Path | None:
        if cwd is None:
            return None
        path = Path(cwd)
        if not path.is_dir():
            raise ConfigurationError(f"Directory {path} does not exist.")
        return path
