"""
Attach Controller.

In attach mode the watcher follows a single pollen: the first pollen seen
while the slot is empty is attached, every other pollen is ignored until
the attached one is done and has been set as wallpaper.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class AttachController:
    """Single optional slot holding the id of the attached pollen."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self.attached: Optional[str] = None

    def blocks(self, pollen_id: str) -> bool:
        """True if events of `pollen_id` must be ignored."""
        return self.enabled and self.attached is not None and self.attached != pollen_id

    def is_attached(self, pollen_id: str) -> bool:
        return self.enabled and self.attached == pollen_id

    def try_attach(self, pollen_id: str) -> bool:
        """Attach `pollen_id` if the slot is free. Returns True if it holds the slot."""
        if not self.enabled:
            return False
        if self.attached is None:
            self.attached = pollen_id
            logger.info(f"Attached to pollen {pollen_id}")
        return self.attached == pollen_id

    def release(self, pollen_id: str):
        """Empty the slot if `pollen_id` holds it."""
        if self.attached == pollen_id:
            logger.info(f"Attached pollen {pollen_id} is done, detaching")
            self.attached = None
