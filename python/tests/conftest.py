"""Shared fixtures: an in-memory stand-in for the IPFS node."""
import base64
from pathlib import Path
from typing import Dict, List

import httpx
import pytest

from pollen_wall.config import WatcherConfig
from pollen_wall.exceptions import IpfsApiError
from pollen_wall.main import PollenWatcher
from pollen_wall.source import DecodedMessage
from pollen_wall.storage import ORIGIN_HEADER_SIZE, PollenStorage
from pollen_wall.tasks import BackgroundTasks
from pollen_wall.trigger import WallpaperTrigger


def wire(text: str, topic: str) -> dict:
    """A pubsub JSON line as the node streams it."""
    return {
        "from": "12D3KooWpeer",
        "data": base64.b64encode(text.encode("utf-8")).decode("ascii"),
        "seqno": "AQ==",
        "topicIDs": [topic],
    }


def message(text: str, topic: str) -> DecodedMessage:
    return DecodedMessage(text=text, topic_ids=[topic])


class FakeIpfsClient:
    """
    Records every call and answers from dictionaries.

    Attributes:
        inputs: message ref -> pollen id
        outputs: message ref -> file names in the output folder
        blobs: `<pollen id>/<name>` -> metadata content
        contents: evolution ref -> file bytes (without the tar header)
        subscriptions: topic -> items to stream (dicts, or exceptions to raise)
        listings: message ref -> raw `file/ls` answer, replacing the one built from `outputs`
    """

    def __init__(self):
        self.inputs: Dict[str, str] = {}
        self.outputs: Dict[str, List[str]] = {}
        self.blobs: Dict[str, bytes] = {}
        self.contents: Dict[str, bytes] = {}
        self.subscriptions: Dict[str, list] = {}
        self.listings: Dict[str, dict] = {}
        self.broken_downloads = set()
        self.calls: List[tuple] = []

    def calls_to(self, name: str) -> List[str]:
        return [arg for call, arg in self.calls if call == name]

    async def block_stat(self, path: str) -> dict:
        self.calls.append(("block_stat", path))
        ref = path.split("/")[0]
        if ref not in self.inputs:
            raise IpfsApiError(f"block/stat failed: {path} not found", path="/block/stat")
        return {"Key": self.inputs[ref], "Size": 64}

    async def file_ls(self, path: str) -> dict:
        self.calls.append(("file_ls", path))
        ref = path.split("/")[2]
        if ref in self.listings:
            return self.listings[ref]
        if ref not in self.outputs:
            raise IpfsApiError(f"file/ls failed: no link named output under {ref}", path="/file/ls")
        links = [
            {"Name": name, "Hash": f"{ref}-{name}", "Size": 3, "Type": "File"}
            for name in self.outputs[ref]
        ]
        return {"Arguments": {path: ref}, "Objects": {ref: {"Hash": ref, "Links": links}}}

    async def cat(self, path: str) -> bytes:
        self.calls.append(("cat", path))
        if path not in self.blobs:
            raise IpfsApiError(f"cat failed: no link named {path}", path="/cat")
        return self.blobs[path]

    async def get(self, ref: str):
        self.calls.append(("get", ref))
        data = b"\0" * ORIGIN_HEADER_SIZE + self.contents.get(ref, ref.encode("utf-8"))
        if ref in self.broken_downloads:
            yield data[:ORIGIN_HEADER_SIZE + 1]
            raise httpx.ReadError("connection reset")
        # First chunk carries the header plus the start of the file
        yield data[:ORIGIN_HEADER_SIZE + 2]
        yield data[ORIGIN_HEADER_SIZE + 2:]

    async def pubsub_sub(self, topic: str):
        self.calls.append(("pubsub_sub", topic))
        for item in self.subscriptions.get(topic, []):
            if isinstance(item, Exception):
                raise item
            yield item


@pytest.fixture
def ipfs():
    return FakeIpfsClient()


@pytest.fixture
def applied():
    """Paths the wallpaper was set to, in order."""
    return []


@pytest.fixture
def make_watcher(ipfs, applied, tmp_path):
    def _make(client=None, **overrides) -> PollenWatcher:
        settings = dict(home=tmp_path, apply_delay=0.0, cleanup_delay=0.0, resubscribe_delay=None)
        settings.update(overrides)
        config = WatcherConfig(**settings)
        tasks = BackgroundTasks()
        storage = PollenStorage(config.app_folder, tasks=tasks, cleanup_delay=config.cleanup_delay)
        trigger = WallpaperTrigger(tasks, delay=0.0, apply=applied.append)
        watcher = PollenWatcher(client or ipfs, storage, config=config, trigger=trigger, tasks=tasks)
        watcher.prepare_storage()
        return watcher
    return _make


def stored_files(folder: Path) -> List[str]:
    return sorted(p.name for p in folder.iterdir())
