"""
Pollen Wall - Event Loop

Follows pollens announced on the pollinations IPFS node:
1. Consumes messages from `processing_pollen` and `done_pollen` (pubsub)
2. Tracks each pollen's lifecycle in the registry
3. Downloads the latest evolution of done (or attached) pollens
4. Sets it as wallpaper and deletes older evolutions

Topics:
- Input: 'processing_pollen' (a pollen produced a new evolution)
- Input: 'done_pollen' (a pollen finished)
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import httpx

from pollen_wall import __version__
from pollen_wall.attach import AttachController
from pollen_wall.config import DONE_TOPIC, PROCESSING_TOPIC, WatcherConfig
from pollen_wall.exceptions import IpfsApiError, MessageDecodeError, StorageError
from pollen_wall.ipfs import IpfsClient
from pollen_wall.models.pollen import Model, PolledEvolution, PollenEvent, PollenStatus, Topic
from pollen_wall.registry import PollenRegistry
from pollen_wall.resolver import latest_evolution
from pollen_wall.source import DecodedMessage, MessageSource
from pollen_wall.storage import PollenStorage
from pollen_wall.tasks import BackgroundTasks
from pollen_wall.trigger import WallpaperTrigger

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# A lookup that fails or answers something malformed skips the message
LOOKUP_ERRORS = (httpx.HTTPError, IpfsApiError, KeyError, TypeError, ValueError)


class PollenWatcher:
    """
    Single event loop driving the registry.

    Every registry access and remote lookup happens sequentially per message;
    saving side effects (wallpaper, cleanup) are handed to background tasks.
    """

    def __init__(
        self,
        client: IpfsClient,
        storage: PollenStorage,
        config: Optional[WatcherConfig] = None,
        trigger: Optional[WallpaperTrigger] = None,
        tasks: Optional[BackgroundTasks] = None
    ):
        self.client = client
        self.config = config or WatcherConfig()
        self.storage = storage
        self.tasks = tasks if tasks is not None else storage.tasks
        self.trigger = trigger or WallpaperTrigger(self.tasks, delay=self.config.apply_delay)

        self.registry = PollenRegistry(
            attach_mode=self.config.attach,
            ignore_done_after_apply=self.config.ignore_done_after_apply
        )
        self.attach = AttachController(enabled=self.config.attach)
        self.source: Optional[MessageSource] = None

    # =========================================================================
    # Remote lookups
    # =========================================================================

    async def _resolve_pollen_id(self, ref: str) -> str:
        stat = await self.client.block_stat(f"{ref}/input")
        return stat['Key']

    async def _fetch_text(self, path: str) -> Optional[str]:
        """Content of a small metadata file, None if it is missing or empty."""
        try:
            blob = await self.client.cat(path)
        except IpfsApiError as e:
            logger.debug(f"No metadata at {path}: {e}")
            return None
        text = blob.decode("utf-8", errors="replace")
        return text or None

    async def _fetch_metadata(self, pollen_id: str):
        text_input = await self._fetch_text(f"{pollen_id}/text_input")
        model_blob = await self._fetch_text(f"{pollen_id}/model")
        model_type = Model.from_blob(model_blob) if model_blob else None
        return model_type, text_input

    async def _find_latest_evolution(self, ref: str) -> Optional[PolledEvolution]:
        listing = await self.client.file_ls(f"/ipfs/{ref}/output")
        return latest_evolution(listing, extension=self.config.artifact_extension)

    # =========================================================================
    # Message handling
    # =========================================================================

    async def handle_message(self, message: DecodedMessage):
        """Process one decoded message. Lookup failures only skip this message."""
        topic = message.topic
        if topic == Topic.UNKNOWN:
            logger.debug(f"Ignoring message on unknown topic {message.topic_ids}")
            return

        ref = message.text
        try:
            pollen_id = await self._resolve_pollen_id(ref)
        except LOOKUP_ERRORS as e:
            logger.warning(f"Couldn't retrieve pollen id of {ref}, ignoring: {e}")
            return

        if self.attach.blocks(pollen_id):
            logger.debug(f"Ignoring pollen {pollen_id}, attached to {self.attach.attached}")
            return

        model_type, text_input = None, None
        metadata_fetched = False
        if self.registry.needs_metadata(pollen_id) and not self.registry.is_retired(pollen_id):
            try:
                model_type, text_input = await self._fetch_metadata(pollen_id)
                metadata_fetched = True
            except httpx.HTTPError as e:
                logger.warning(f"Couldn't fetch metadata of pollen {pollen_id}, ignoring: {e}")
                return

        transition = self.registry.upsert(
            pollen_id,
            PollenEvent(
                topic=topic,
                ref=ref,
                model_type=model_type,
                text_input=text_input,
                metadata_fetched=metadata_fetched
            )
        )
        if transition.ignored:
            return

        self.attach.try_attach(pollen_id)

        try:
            evolution = await self._find_latest_evolution(ref)
        except LOOKUP_ERRORS as e:
            logger.warning(f"Couldn't list the output of pollen {pollen_id}, ignoring: {e}")
            return
        if evolution is None:
            logger.debug(f"Pollen {pollen_id} has no evolution yet")
            return

        if transition.current == PollenStatus.PROCESSING:
            if self.attach.is_attached(pollen_id):
                logger.info("New generation of attached pollen is arrived!")
                await self._save_and_apply(pollen_id, evolution, done=False)
        elif transition.current == PollenStatus.DONE:
            logger.info("Pollen arrived!")
            await self._save_and_apply(pollen_id, evolution, done=True)

    async def _save_and_apply(self, pollen_id: str, evolution: PolledEvolution, done: bool) -> bool:
        """
        Save an evolution, set it as wallpaper and clean older ones.

        The registry is only updated once the file is written.
        """
        path = self.storage.path_for(pollen_id, evolution)
        try:
            created = await self.storage.save(self.client.get(evolution.ref), path)
        except (StorageError, httpx.HTTPError, IpfsApiError) as e:
            logger.error(f"Failed to save pollen {pollen_id}: {e}")
            return False

        self.trigger.schedule(path, evolution.ref, self.registry.processing_count())

        if done:
            self.registry.mark_applied(pollen_id, evolution)
            self.attach.release(pollen_id)
        else:
            self.registry.record_evolution(pollen_id, evolution)

        await self.storage.clear_previous(path, created)

        if done and not self.config.attach:
            self.registry.remove(pollen_id)
        return True

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def prepare_storage(self):
        """Create the storage folder and clean it if asked to."""
        self.storage.ensure_folder()
        if self.config.clean:
            self.storage.clean()

    async def run(self, source: Optional[MessageSource] = None):
        """
        Main run loop - consume messages until the source ends.

        Raises:
            MessageDecodeError: A payload could not be decoded
        """
        logger.info("=== Starting Pollen Wall ===")
        self.source = source or MessageSource(
            self.client,
            topics=[DONE_TOPIC, PROCESSING_TOPIC],
            resubscribe_delay=self.config.resubscribe_delay
        )
        if self.config.attach:
            logger.info("Attach mode: following one pollen at a time")
        logger.info("Waiting for new pollens to arrive, keep it running.. zZzZ")

        async for message in self.source.messages():
            await self.handle_message(message)

    async def stop(self):
        """Stop consuming and let the background tasks finish."""
        logger.info("Stopping watcher...")
        if self.source is not None:
            await self.source.close()
        await self.tasks.join()
        logger.info("Watcher stopped")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pollen_wall",
        description="Sets pollens from pollinations.ai as your wallpaper as they arrive."
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument(
        '-A', '--address', metavar='addr',
        help='You may give a custom address to pollinations ipfs node.'
    )
    parser.add_argument(
        '--home', metavar='home',
        help='If the home directory could not be determined, run with '
             '"--home <absolute-path-to-your-home-directory>"'
    )
    parser.add_argument(
        '-c', '--clean', action='store_true',
        help='Remove images in "~/.pollen_wall" directory.'
    )
    parser.add_argument(
        '-a', '--attach', action='store_true',
        help='Attach to a random processing pollen until its evolution is done.'
    )
    parser.add_argument('--log-level', default=None, help='Logging level (default: INFO)')
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> WatcherConfig:
    """Environment config overridden by command line flags."""
    config = WatcherConfig.from_env()
    if args.address:
        config.address = args.address
    if args.home:
        config.home = Path(args.home)
    if args.log_level:
        config.log_level = args.log_level.upper()
    config.clean = args.clean
    config.attach = config.attach or args.attach
    return config


async def _serve(config: WatcherConfig):
    tasks = BackgroundTasks()
    storage = PollenStorage(config.app_folder, tasks=tasks, cleanup_delay=config.cleanup_delay)
    async with IpfsClient(config.address, request_timeout=config.request_timeout) as client:
        watcher = PollenWatcher(client, storage, config=config, tasks=tasks)
        watcher.prepare_storage()
        try:
            await watcher.run()
        finally:
            await watcher.stop()


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = build_config(args)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout
    )

    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    except MessageDecodeError as e:
        logger.error(f"Fatal: {e}")
        return 1
    except (RuntimeError, ValueError, OSError) as e:
        logger.error(f"Fatal: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
