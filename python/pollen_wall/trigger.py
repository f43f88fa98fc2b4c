"""
Wallpaper Trigger.

Sets a freshly saved evolution as the wallpaper after a short delay, as a
background task. The outcome is only reported: a failure is never retried
and never touches the registry or the storage folder.
"""
import asyncio
import logging
from pathlib import Path
from typing import Callable

from pollen_wall.exceptions import ApplyError
from pollen_wall.tasks import BackgroundTasks
from pollen_wall.wallpaper import set_wallpaper

logger = logging.getLogger(__name__)

GATEWAY_URL = "https://ipfs.io/ipfs/"


class WallpaperTrigger:
    """
    Delayed, fire-and-forget wallpaper setter.

    Args:
        tasks: Where the delayed calls are scheduled
        delay: Seconds to wait so the file is visible to the desktop
        apply: Blocking function setting a path as wallpaper, run in a thread
    """

    def __init__(
        self,
        tasks: BackgroundTasks,
        delay: float = 0.1,
        apply: Callable[[Path], None] = set_wallpaper
    ):
        self.tasks = tasks
        self.delay = delay
        self.apply = apply

    def schedule(self, path: Path, ref: str, processing_count: int = 0) -> asyncio.Task:
        """Set `path` as wallpaper after `delay` seconds, without waiting."""
        return self.tasks.spawn(
            self._apply_later(path, ref, processing_count),
            name=f"wallpaper-{ref}"
        )

    async def _apply_later(self, path: Path, ref: str, processing_count: int) -> bool:
        await asyncio.sleep(self.delay)
        try:
            await asyncio.to_thread(self.apply, path)
        except (ApplyError, OSError) as e:
            logger.error(f"Failed to set wallpaper: {e}")
            return False

        logger.info("Wallpaper set with the new pollen!")
        logger.info(f"You may find this pollen at: {GATEWAY_URL}{ref}")
        logger.info(f"Currently {processing_count} pollens are processing..")
        return True
