"""Bounded-parallelism batching on top of the registry.

Lint-style runs split a long file list into command-line sized chunks
and run one process per chunk with limited concurrency. Each chunk fails
independently; the caller decides whether to continue past failures.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable, Iterable, Sequence
from pathlib import Path
from typing import TypeVar

import anyio

__all__ = ["MAX_ARG_LENGTH", "build_chunks", "run_bounded"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _max_arg_length() -> int:
    if sys.platform == "darwin":
        return 13172
    if sys.platform == "win32":
        return 4895
    return 65531


# Conservative command-line length limit per platform
MAX_ARG_LENGTH = _max_arg_length()


def build_chunks(
    files: Iterable[str | Path],
    extensions: Iterable[str],
    max_length: int = MAX_ARG_LENGTH,
    root: str | Path | None = None,
) -> list[str]:
    """Split files into quoted argument strings of at most max_length chars.

    Args:
        files: File paths
        extensions: Accepted extensions without the dot (e.g. "ts")
        max_length: Maximum length of one chunk
        root: Paths are made relative to root (default: current directory)

    Returns:
        Non-empty chunks, each a space separated list of quoted paths
    """
    accepted = {ext.lstrip(".") for ext in extensions}
    root = Path(root) if root is not None else Path.cwd()

    chunks: list[str] = [""]
    for file in files:
        path = Path(file)
        if path.suffix.lstrip(".") not in accepted:
            continue
        arg = f'"{os.path.relpath(path, root)}" '
        if chunks[-1] and len(chunks[-1]) + len(arg) > max_length:
            chunks.append("")
        chunks[-1] += arg

    return [chunk.rstrip() for chunk in chunks if chunk]


async def run_bounded(
    factories: Sequence[Callable[[], Awaitable[T]]],
    concurrency: int = 4,
    continue_on_error: bool = True,
) -> list[T | BaseException]:
    """Run awaitable factories with at most `concurrency` in flight.

    Args:
        factories: Zero-argument callables returning awaitables
        concurrency: Maximum number of concurrently running items (clamped to >= 1)
        continue_on_error: Keep going after a failure; failures are returned
            in place of results. When False the first failure cancels the
            rest and is raised.

    Returns:
        Results or exceptions, in the order of factories
    """
    limiter = anyio.CapacityLimiter(max(1, concurrency))

    async def _run(factory: Callable[[], Awaitable[T]]) -> T:
        async with limiter:
            return await factory()

    tasks = [asyncio.create_task(_run(factory)) for factory in factories]
    if not tasks:
        return []

    if continue_on_error:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        failed = sum(1 for item in results if isinstance(item, BaseException))
        if failed:
            logger.info(f"{failed} of {len(results)} batch item(s) failed")
        return results

    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
