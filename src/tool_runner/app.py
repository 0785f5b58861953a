"""Application wiring for the preview server.

Opens the tool logger, starts the preview server and the signal manager,
and on shutdown kills child processes before closing everything else.
"""

from __future__ import annotations

import logging
import sys

from .config import LogLevel, get_config
from .logger import LOG_FORMAT, ToolLogger
from .preview.server import PreviewConfig, PreviewServer, Renderer
from .runtime.registry import ProcessRegistry
from .signal_manager import SignalManager

__all__ = ["configure_logging", "serve_preview"]

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure diagnostics logging for the tool_runner namespace.

    Third-party libraries stay at WARNING to reduce noise.
    """
    config = get_config()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=logging.WARNING, handlers=[handler])
    level = logging.DEBUG if config.log_level is LogLevel.DEBUG else logging.INFO
    logging.getLogger("tool_runner").setLevel(level)


async def serve_preview(
    renderer: Renderer,
    preview_config: PreviewConfig | None = None,
    registry: ProcessRegistry | None = None,
    tool_logger: ToolLogger | None = None,
) -> None:
    """Serve pages until SIGTERM (or SIGINT with no running processes).

    Args:
        renderer: Page rendering engine
        preview_config: Preview server options
        registry: Registry of processes started while serving (e.g. builds)
        tool_logger: Output logger; opened and closed here when not given
    """
    own_logger = tool_logger is None
    tool_logger = tool_logger or ToolLogger()
    if own_logger:
        tool_logger.open()

    registry = registry or ProcessRegistry(tool_logger)
    server = PreviewServer(renderer, preview_config, tool_logger)
    signal_manager = SignalManager(registry)

    try:
        await signal_manager.start()
        await server.start()
        tool_logger.info(f"Preview server: {server.url}")

        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown requested, stopping preview server")

    finally:
        await registry.close_child_process()
        await server.stop()
        await signal_manager.stop()
        if own_logger:
            tool_logger.close()
        logger.info("serve_preview: cleanup completed")
