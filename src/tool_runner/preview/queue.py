"""FIFO queue that runs one task at a time.

The page renderer mutates process-wide state while it builds a page, so
renders must never interleave. Each task is a plain callable started by
the queue; the task itself calls ``queue.next()`` when its work is done
(usually from a completion callback), the queue has no other way to
know.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

__all__ = ["SerialRequestQueue"]

logger = logging.getLogger(__name__)

Task = Callable[[], None]


class SerialRequestQueue:
    """Single-concurrency task runner.

    Invariant: ``current`` is set exactly while a task is executing.

    Example:
        queue = SerialRequestQueue()

        def render_page():
            future = start_render()
            future.add_done_callback(lambda _: queue.next())

        queue.push(render_page)
    """

    def __init__(self) -> None:
        self._pending: deque[Task] = deque()
        self.current: Task | None = None

    @property
    def size(self) -> int:
        """Number of tasks waiting to start."""
        return len(self._pending)

    @property
    def is_idle(self) -> bool:
        return self.current is None

    def push(self, task: Task) -> None:
        """Start task now if the queue is idle, else append it."""
        if self.current is None:
            logger.debug("Queue is empty. Starting handler now")
            self.current = task
            task()
        else:
            self._pending.append(task)
            logger.debug(f"Push handler in queue. Queue size: {len(self._pending)}")

    def next(self) -> None:
        """Start the next pending task, or go idle."""
        if self._pending:
            task = self._pending.popleft()
            logger.debug(f"Starting next handler in queue. Queue size: {len(self._pending)}")
            self.current = task
            task()
        else:
            logger.debug("Queue is empty.")
            self.current = None
