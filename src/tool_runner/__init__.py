"""tool-runner: child process orchestration for developer tooling.

Environment variables:
    TR_LOG_DIR: Directory for log files (default: console only)
    TR_LOG_LEVEL: Console log level error|info|debug (default info)
    TR_KILL_TIMEOUT: Seconds to wait for exit after SIGKILL (default 5.0)
    TR_SIGINT_MODE: cancel|exit (default cancel)
"""

__version__ = "0.1.0"

from .logger import ToolLogger
from .preview import PreviewServer, SerialRequestQueue
from .runtime import (
    ExecSpec,
    ForkSpec,
    ProcessFailedError,
    ProcessHandle,
    ProcessRegistry,
    SpawnSpec,
)

__all__ = [
    "ExecSpec",
    "ForkSpec",
    "PreviewServer",
    "ProcessFailedError",
    "ProcessHandle",
    "ProcessRegistry",
    "SerialRequestQueue",
    "SpawnSpec",
    "ToolLogger",
    "__version__",
]
