"""Data models for Pollen Wall"""

from pollen_wall.models.message import PubsubMessage
from pollen_wall.models.pollen import (
    Model,
    PolledEvolution,
    PollenEvent,
    PollenInfo,
    PollenStatus,
    Topic,
)

__all__ = [
    "Model",
    "PolledEvolution",
    "PollenEvent",
    "PollenInfo",
    "PollenStatus",
    "PubsubMessage",
    "Topic",
]
