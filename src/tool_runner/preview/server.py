"""Embedded preview server.

Serves rendered pages over HTTP. The rendering engine is an external
collaborator with a single ``render(context)`` coroutine; it is not safe
to run two renders at once, so every page request is pushed as exactly one
task on the server's SerialRequestQueue and the request handler waits for
that task to settle its response.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote

from aiohttp import web

from ..config import get_config
from ..logger import ToolLogger
from .queue import SerialRequestQueue

__all__ = [
    "PageNotFound",
    "PreviewConfig",
    "PreviewServer",
    "RenderContext",
    "Renderer",
]

logger = logging.getLogger(__name__)

DEBUG_COOKIE = "s3debug"
MARKER_COOKIE = "IsToolRunner"


class PageNotFound(Exception):
    """Raised by a renderer when no page matches the request."""


@dataclass
class RenderContext:
    """Per-request state handed to the renderer.

    Attributes:
        request: The incoming aiohttp request
        page: Decoded path with the route prefix removed
        debug: Debug mode of the server
        route_prefix: Prefix stripped from the path
        start_time: Time the render started (epoch seconds)
        cookies: Cookies to set on the response
    """

    request: web.Request
    page: str
    debug: bool = False
    route_prefix: str = ""
    start_time: float = field(default_factory=time.time)
    cookies: dict[str, str] = field(default_factory=dict)


class Renderer(Protocol):
    async def render(self, context: RenderContext) -> str: ...


@dataclass
class PreviewConfig:
    """Preview server configuration.

    Attributes:
        host: Bind host (default from TR_PREVIEW_HOST)
        port: Bind port, 0 = random (default from TR_PREVIEW_PORT)
        debug: Debug mode (sets the debug cookie)
        route_prefix: Prefix removed from request paths before rendering
        static_dir: Directory served under /static/
        cookie_max_age: Max-Age of preset cookies in seconds
    """

    host: str | None = None
    port: int | None = None
    debug: bool = False
    route_prefix: str = ""
    static_dir: Path | None = None
    cookie_max_age: int = 900


class PreviewServer:
    """aiohttp server rendering one page at a time."""

    def __init__(
        self,
        renderer: Renderer,
        config: PreviewConfig | None = None,
        tool_logger: ToolLogger | None = None,
    ) -> None:
        self.config = config or PreviewConfig()
        self.queue = SerialRequestQueue()
        self._renderer = renderer
        self._logger = tool_logger or ToolLogger()
        self._runner: web.AppRunner | None = None
        self._actual_port = 0

    @property
    def host(self) -> str:
        return self.config.host or get_config().preview_host

    @property
    def port(self) -> int:
        return self._actual_port

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self._actual_port}"

    def create_app(self) -> web.Application:
        app = web.Application()
        if self.config.static_dir is not None:
            app.router.add_static("/static/", self.config.static_dir)
        app.router.add_get("/{tail:.*}", self.handle_page)
        return app

    async def start(self) -> int:
        """Start serving, return the bound port."""
        port = self.config.port if self.config.port is not None else get_config().preview_port
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, port)
        await site.start()

        self._actual_port = self._runner.addresses[0][1]
        logger.info(f"Preview server started at {self.url}")
        return self._actual_port

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.debug("Preview server stopped")

    async def handle_page(self, request: web.Request) -> web.StreamResponse:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[web.StreamResponse] = loop.create_future()

        self._logger.debug(f"Push request in queue. Page: {request.path_qs}")
        self.queue.push(lambda: self._start_render(request, future))

        return await future

    def build_context(self, request: web.Request) -> RenderContext:
        page = unquote(request.path)
        prefix = self.config.route_prefix
        if prefix and page.startswith(prefix):
            page = page[len(prefix):] or "/"

        context = RenderContext(
            request=request,
            page=page,
            debug=self.config.debug,
            route_prefix=prefix,
        )
        if self.config.debug:
            self._preset_cookie(context, DEBUG_COOKIE)
        self._preset_cookie(context, MARKER_COOKIE)
        return context

    def _preset_cookie(self, context: RenderContext, name: str) -> None:
        if name not in context.request.cookies:
            context.cookies[name] = "true"
            self._logger.debug(f"Cookie {name} successfully created.")

    def _start_render(self, request: web.Request, future: asyncio.Future) -> None:
        context = self.build_context(request)
        task = asyncio.create_task(self._render(context, future))
        task.add_done_callback(lambda _: self.queue.next())

    async def _render(self, context: RenderContext, future: asyncio.Future) -> None:
        url = context.request.path_qs
        self._logger.debug(f"StartRenderPage: {url}")
        try:
            html = await self._renderer.render(context)
            response = web.Response(text=html, content_type="text/html")
            self._logger.debug(f"FinishRenderPage: {url}")
        except PageNotFound as e:
            self._logger.error(f"Error process request {url}. Error: {e}")
            response = web.Response(status=404, text=str(e))
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            self._logger.error(f"Error process request {url}. Error: {e}")
            response = web.Response(status=500, text=str(e))

        for name, value in context.cookies.items():
            response.set_cookie(name, value, max_age=self.config.cookie_max_age)

        # The client may have gone away while the page was queued
        if not future.done():
            future.set_result(response)
