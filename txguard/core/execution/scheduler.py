"""
Delayed callback scheduling on the running event loop.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Set

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Runs ``fn`` after ``delay`` seconds in its own asyncio task.

    Each owner (queue, batch) holds its own instance, so a pending backoff in
    one never delays another. ``fn`` may be sync or return an awaitable.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def after(self, delay: float, fn: Callable[[], Any]) -> asyncio.Task:
        """Schedule ``fn``. Must be called with a running event loop."""
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        task = asyncio.get_running_loop().create_task(self._run(delay, fn))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def wait_idle(self) -> None:
        """Wait until every scheduled task (including ones they schedule) has finished."""
        current = asyncio.current_task()
        while True:
            tasks = [t for t in self._tasks if t is not current]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def cancel_all(self) -> None:
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, delay: float, fn: Callable[[], Any]) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        result = fn()
        if inspect.isawaitable(result):
            await result

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Scheduled callback failed: {exc}", exc_info=exc)
