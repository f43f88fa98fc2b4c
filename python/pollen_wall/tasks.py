"""
Background Tasks.

Fire-and-forget work (setting the wallpaper, deleting stale evolutions) runs
in tasks the event loop never waits for. They are kept here so they are not
garbage collected mid-flight, their failures are logged, and tests can wait
for all of them with `join()`.
"""
import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Set of running background tasks. Tasks are never cancelled."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, name: str = "") -> asyncio.Task:
        """Schedule `coro` and return immediately."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task {task.get_name()} failed: {error!r}", exc_info=error)

    async def join(self):
        """Wait until every task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
