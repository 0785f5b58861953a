"""Preview server and its serial render queue."""

from __future__ import annotations

from .queue import SerialRequestQueue
from .server import PageNotFound, PreviewConfig, PreviewServer, RenderContext, Renderer

__all__ = [
    "PageNotFound",
    "PreviewConfig",
    "PreviewServer",
    "RenderContext",
    "Renderer",
    "SerialRequestQueue",
]
