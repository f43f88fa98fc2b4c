"""
Pollen Storage.

Saves evolutions into the app folder (`~/.pollen_wall`) as
`<pollen_id>_<evolution name>` and keeps the folder small: once a new
evolution is saved, every file created before it is deleted.
"""
import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import AsyncIterable, Iterable, Iterator, List, Optional, Set

from pollen_wall.exceptions import StorageError
from pollen_wall.models.pollen import PolledEvolution
from pollen_wall.tasks import BackgroundTasks

logger = logging.getLogger(__name__)

# `get` answers with a tar archive: a 512 byte header precedes the file
ORIGIN_HEADER_SIZE = 512


class HeaderStripper:
    """
    Drops the first `size` bytes of a chunked stream.

    The header normally sits entirely in the first chunk, but a short first
    chunk is handled by carrying the remainder over to the next ones.
    """

    def __init__(self, size: int = ORIGIN_HEADER_SIZE):
        self.remaining = size

    def feed(self, chunk: bytes) -> bytes:
        if self.remaining <= 0:
            return chunk
        skipped = min(self.remaining, len(chunk))
        self.remaining -= skipped
        return chunk[skipped:]

    def strip(self, chunks: Iterable[bytes]) -> Iterator[bytes]:
        for chunk in chunks:
            data = self.feed(chunk)
            if data:
                yield data


def creation_time_ns(path: Path) -> int:
    """Creation time of a file, falling back to mtime where it is not recorded."""
    stat = path.stat()
    birth = getattr(stat, "st_birthtime_ns", None)
    if birth is None and getattr(stat, "st_birthtime", None) is not None:
        birth = int(stat.st_birthtime * 1_000_000_000)
    return birth if birth is not None else stat.st_mtime_ns


class PollenStorage:
    """
    Local store of downloaded evolutions.

    Args:
        folder: Storage directory, created if missing
        tasks: Where deferred deletions are scheduled
        cleanup_delay: Seconds to wait before deleting a stale file
    """

    def __init__(self, folder: Path, tasks: Optional[BackgroundTasks] = None, cleanup_delay: float = 0.0):
        self.folder = Path(folder)
        self.tasks = tasks if tasks is not None else BackgroundTasks()
        self.cleanup_delay = cleanup_delay
        self._in_flight: Set[Path] = set()

    def ensure_folder(self) -> bool:
        """Create the storage folder. Returns True if it had to be created."""
        if self.folder.exists():
            return False
        self.folder.mkdir(parents=True, exist_ok=True)
        logger.info(f"App folder {self.folder} was not found, created it")
        return True

    def clean(self):
        """Remove every saved evolution."""
        shutil.rmtree(self.folder, ignore_errors=True)
        self.folder.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cleaned all pollens in {self.folder}")

    def path_for(self, pollen_id: str, evolution: PolledEvolution) -> Path:
        return self.folder / f"{pollen_id}_{evolution.name}"

    async def save(self, chunks: AsyncIterable[bytes], path: Path) -> int:
        """
        Write a downloaded evolution to `path`, dropping the origin header.

        File operations run in worker threads so a large evolution does not
        hold up the event loop.

        Returns:
            Creation time of the written file, in nanoseconds

        Raises:
            StorageError: The file could not be written or the download broke
        """
        stripper = HeaderStripper()
        self._in_flight.add(path)
        try:
            # A rewrite must get a fresh creation time
            await asyncio.to_thread(path.unlink, missing_ok=True)
            f = await asyncio.to_thread(open, path, "wb")
            try:
                async for chunk in chunks:
                    data = stripper.feed(chunk)
                    if data:
                        await asyncio.to_thread(f.write, data)
            finally:
                await asyncio.to_thread(f.close)
            created = await asyncio.to_thread(creation_time_ns, path)
        except OSError as e:
            path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {path}: {e}", context={'path': str(path)}) from e
        except Exception:
            # Broken download, do not leave a truncated image behind
            path.unlink(missing_ok=True)
            raise
        finally:
            self._in_flight.discard(path)
        logger.debug(f"Saved {path}")
        return created

    def _is_stale(self, path: Path, current_created: int) -> bool:
        if path in self._in_flight:
            return False
        try:
            return creation_time_ns(path) < current_created
        except OSError:
            return False

    def stale_entries(self, current: Path, current_created: int) -> List[Path]:
        """Files created strictly before `current_created`, except in-flight writes."""
        stale = []
        try:
            entries = list(os.scandir(self.folder))
        except OSError as e:
            logger.error(f"Failed to read directory {self.folder}: {e}")
            return stale
        for entry in entries:
            path = Path(entry.path)
            if path == current or not entry.is_file():
                continue
            if self._is_stale(path, current_created):
                stale.append(path)
        return stale

    async def clear_previous(self, current: Path, current_created: int) -> List[Path]:
        """
        Schedule deletion of every evolution older than `current`.

        Deletions run as background tasks after `cleanup_delay` seconds. Each
        file is checked again right before it is deleted, so one written
        anew in the meantime is kept.

        Returns:
            Paths scheduled for deletion
        """
        stale = await asyncio.to_thread(self.stale_entries, current, current_created)
        for path in stale:
            self.tasks.spawn(self._delete_later(path, current_created), name=f"delete-{path.name}")
        if stale:
            logger.debug(f"Scheduled deletion of {len(stale)} old pollen(s)")
        return stale

    async def _delete_later(self, path: Path, current_created: int):
        if self.cleanup_delay > 0:
            await asyncio.sleep(self.cleanup_delay)
        if not self._is_stale(path, current_created):
            logger.debug(f"Keeping {path}, it was written again")
            return
        try:
            await asyncio.to_thread(path.unlink)
            logger.debug(f"Deleted {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete {path}: {e}")
