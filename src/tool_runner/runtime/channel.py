"""Message channel between a forked worker and its parent.

The parent opens two pipes and passes the child's ends through
TOOL_RUNNER_CHANNEL="<read_fd>,<write_fd>". Messages are JSON documents,
one per line.

Worker side::

    from tool_runner.runtime.channel import connect

    channel = connect()
    channel.send({"type": "test", "id": "suite::case"})
    for message in channel:
        ...
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator, Iterator
from typing import Any

__all__ = ["CHANNEL_ENV", "ParentChannel", "WorkerChannel", "connect"]

logger = logging.getLogger(__name__)

CHANNEL_ENV = "TOOL_RUNNER_CHANNEL"


def _encode(message: Any) -> bytes:
    return (json.dumps(message, ensure_ascii=False) + "\n").encode("utf-8")


class WorkerChannel:
    """Blocking channel used inside the worker process."""

    def __init__(self, read_fd: int, write_fd: int) -> None:
        self._reader = os.fdopen(read_fd, "rb")
        self._writer = os.fdopen(write_fd, "wb")

    def send(self, message: Any) -> None:
        self._writer.write(_encode(message))
        self._writer.flush()

    def receive(self) -> Any | None:
        """Read the next message; None when the parent closed the channel."""
        line = self._reader.readline()
        if not line:
            return None
        return json.loads(line)

    def __iter__(self) -> Iterator[Any]:
        while True:
            message = self.receive()
            if message is None:
                return
            yield message

    def close(self) -> None:
        self._writer.close()
        self._reader.close()


def connect() -> WorkerChannel:
    """Open the channel passed by the parent process.

    Raises:
        RuntimeError: The process was not started in fork mode
    """
    value = os.environ.get(CHANNEL_ENV)
    if not value:
        raise RuntimeError(f"{CHANNEL_ENV} is not set; the worker was not started in fork mode")
    read_fd, write_fd = (int(fd) for fd in value.split(","))
    return WorkerChannel(read_fd, write_fd)


class ParentChannel:
    """Asynchronous channel end owned by the ProcessHandle.

    Lifecycle: create before the spawn (child_fds/env_value go to the child),
    close_child_ends() right after the spawn, then attach() on the loop.
    """

    def __init__(self, limit: int = 2**20) -> None:
        self._limit = limit
        self._child_read, self._parent_write = os.pipe()
        self._parent_read, self._child_write = os.pipe()
        self._reader: asyncio.StreamReader | None = None
        self._read_transport: asyncio.ReadTransport | None = None
        self._write_transport: asyncio.WriteTransport | None = None

    @property
    def child_fds(self) -> tuple[int, int]:
        return (self._child_read, self._child_write)

    @property
    def env_value(self) -> str:
        return f"{self._child_read},{self._child_write}"

    def close_child_ends(self) -> None:
        for fd in (self._child_read, self._child_write):
            try:
                os.close(fd)
            except OSError:
                pass

    async def attach(self) -> None:
        loop = asyncio.get_running_loop()
        self._reader = asyncio.StreamReader(limit=self._limit)
        protocol = asyncio.StreamReaderProtocol(self._reader)
        self._read_transport, _ = await loop.connect_read_pipe(
            lambda: protocol, os.fdopen(self._parent_read, "rb", 0)
        )
        self._write_transport, _ = await loop.connect_write_pipe(
            asyncio.Protocol, os.fdopen(self._parent_write, "wb", 0)
        )

    def send(self, message: Any) -> None:
        if self._write_transport is None or self._write_transport.is_closing():
            raise RuntimeError("channel is not open")
        self._write_transport.write(_encode(message))

    async def messages(self) -> AsyncIterator[Any]:
        """Yield decoded messages until the child closes its end."""
        if self._reader is None:
            return
        async for line in self._reader:
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Dropping malformed channel message: {line[:200]!r}")

    def close(self) -> None:
        for transport in (self._read_transport, self._write_transport):
            if transport is not None and not transport.is_closing():
                transport.close()
        if self._reader is None:
            # attach() never ran, the parent ends are still raw fds
            for fd in (self._parent_read, self._parent_write):
                try:
                    os.close(fd)
                except OSError:
                    pass
