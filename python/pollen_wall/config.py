"""
Process configuration.

Defaults mirror the public pollinations node. Every field can be set from
the environment (`POLLEN_WALL_*`) and then overridden from the command line.
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

APP_FOLDER_NAME = ".pollen_wall"
DEFAULT_POLLINATIONS_MULTIADDR = "/ip4/65.108.44.19/tcp/5005"

PROCESSING_TOPIC = "processing_pollen"
DONE_TOPIC = "done_pollen"
HEARTBEAT = "HEARTBEAT"

# Windows shows a black screen when the wallpaper is set too early
WALLPAPER_SET_DELAY = 0.1
# Linux flashes a blue screen if the previous wallpaper disappears first
CLEANUP_DELAY = WALLPAPER_SET_DELAY + 0.5 if sys.platform.startswith("linux") else 0.0


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class WatcherConfig:
    """
    Runtime configuration of the pollen watcher

    Attributes:
        address: Multiaddr or http(s) URL of the IPFS node RPC API
        home: Home directory override, None to discover it
        attach: Follow a single pollen until its evolution is done
        clean: Empty the storage directory on start
        log_level: Logging level name
        artifact_extension: Extension of evolution files in the output folder
        apply_delay: Seconds to wait before setting the wallpaper
        cleanup_delay: Seconds to wait before deleting stale evolutions
        request_timeout: Timeout for non-streaming RPC calls, in seconds
        resubscribe_delay: Seconds to wait before resubscribing a dropped topic,
            None to let a dropped subscription end
        ignore_done_after_apply: Drop done messages of already applied pollens
    """
    address: str = DEFAULT_POLLINATIONS_MULTIADDR
    home: Optional[Path] = None
    attach: bool = False
    clean: bool = False
    log_level: str = "INFO"
    artifact_extension: str = ".jpg"
    apply_delay: float = WALLPAPER_SET_DELAY
    cleanup_delay: float = CLEANUP_DELAY
    request_timeout: float = 30.0
    resubscribe_delay: Optional[float] = 5.0
    ignore_done_after_apply: bool = True

    @classmethod
    def from_env(cls) -> 'WatcherConfig':
        """Build a config from `POLLEN_WALL_*` environment variables."""
        home = os.environ.get("POLLEN_WALL_HOME")
        return cls(
            address=os.environ.get("POLLEN_WALL_ADDRESS", DEFAULT_POLLINATIONS_MULTIADDR),
            home=Path(home) if home else None,
            attach=_env_bool("POLLEN_WALL_ATTACH", False),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            artifact_extension=os.environ.get("POLLEN_WALL_EXTENSION", ".jpg"),
            ignore_done_after_apply=_env_bool("POLLEN_WALL_IGNORE_DONE_AFTER_APPLY", True),
        )

    def resolve_home(self) -> Path:
        """
        Return the home directory to keep the storage folder in.

        Raises:
            RuntimeError: The home directory could not be determined
        """
        if self.home is not None:
            return Path(self.home)
        try:
            return Path.home()
        except RuntimeError as e:
            raise RuntimeError(
                "Couldn't determine the location of your home directory, "
                "please run with \"--home <absolute-path-to-your-home-directory>\""
            ) from e

    @property
    def app_folder(self) -> Path:
        return self.resolve_home() / APP_FOLDER_NAME
