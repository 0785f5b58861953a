"""Signal handling.

Turns OS signals into orchestrator actions:
- SIGINT: kill running child processes (instead of exiting right away)
- SIGTERM: kill running child processes and shut down

Configuration:
- TR_SIGINT_MODE: cancel | exit

Killing goes through ProcessRegistry.close_child_process(), the single
shutdown path for child processes.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Callable, Optional

from .config import SigintMode, get_config
from .runtime.registry import ProcessRegistry

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """Signal manager.

    Example:
        ```python
        registry = ProcessRegistry(tool_logger)
        signal_manager = SignalManager(registry)

        async def main():
            await signal_manager.start()
            try:
                await signal_manager.wait_for_shutdown()
            finally:
                await signal_manager.stop()

        asyncio.run(main())
        ```

    Attributes:
        registry: Registry whose child processes are killed on interrupt
        sigint_mode: SIGINT handling mode
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        sigint_mode: Optional[SigintMode] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        """Create a signal manager.

        Args:
            registry: Process registry
            sigint_mode: SIGINT handling mode (default from config)
            on_shutdown: Called once shutdown is requested
        """
        self.registry = registry
        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self._on_shutdown = on_shutdown

        self._shutdown_requested: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._close_task: Optional[asyncio.Task] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._original_sigint_handler = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    async def start(self) -> None:
        """Install SIGINT and SIGTERM handlers on the running loop."""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(f"Signal handlers installed (mode={self.sigint_mode.value})")
        else:
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
            logger.debug(f"SIGINT handler installed on Windows (mode={self.sigint_mode.value})")

    async def stop(self) -> None:
        """Restore the original signal handlers."""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except Exception as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        if self._close_task is not None and not self._close_task.done():
            await self._close_task

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self._close_children()
            self._request_shutdown()
            return

        if self.registry.live_count:
            logger.info(
                f"SIGINT received (mode=cancel), killing {self.registry.live_count} child process(es)"
            )
            self._close_children()
        else:
            logger.info("SIGINT received (mode=cancel), no child processes, requesting shutdown")
            self._request_shutdown()

    def _handle_sigterm(self) -> None:
        logger.info("SIGTERM received, initiating graceful shutdown")
        self._close_children()
        self._request_shutdown()

    def _close_children(self) -> None:
        if not self.registry.live_count or self._loop is None:
            return
        if self._close_task is not None and not self._close_task.done():
            return
        self._close_task = self._loop.create_task(self.registry.close_child_process())

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def request_graceful_shutdown(self) -> None:
        """Request shutdown from code."""
        logger.info("Programmatic shutdown requested")
        self._close_children()
        self._request_shutdown()
