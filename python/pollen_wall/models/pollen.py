"""
Pollen data model

Represents generation jobs and the evolutions (images) they produce.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Topic(Enum):
    """Classification of the pubsub channel a message arrived on"""
    PROCESSING = "processing_pollen"
    DONE = "done_pollen"
    UNKNOWN = "unknown"

    @classmethod
    def from_channel(cls, channel: str) -> 'Topic':
        """Map a channel name to a topic, UNKNOWN for anything else"""
        for topic in (cls.PROCESSING, cls.DONE):
            if topic.value == channel:
                return topic
        return cls.UNKNOWN


class PollenStatus(Enum):
    """Lifecycle state of a tracked pollen"""
    PROCESSING = "processing"
    DONE = "done"
    APPLIED_ONCE = "applied_once"

    @classmethod
    def for_topic(cls, topic: Topic) -> 'PollenStatus':
        """Status a pollen enters when it receives a message on `topic`."""
        if topic == Topic.DONE:
            return cls.DONE
        if topic == Topic.PROCESSING:
            return cls.PROCESSING
        raise ValueError(f"No status for topic {topic.value}")


class Model(Enum):
    """Model used to generate a pollen"""
    WIKI_ART = "Wiki Art"
    VIT_B32 = "ViT-B/32"
    GUIDED_DIFFUSION = "QoL tweaks for nshepperd…P Guided Diffusion v2.4"
    UNKNOWN = "unknown"

    @classmethod
    def from_blob(cls, blob: str) -> Optional['Model']:
        """
        Parse the content of a pollen's `model` file.

        The file holds a JSON quoted string. Empty content means the pollen
        carries no model information.
        """
        name = blob.strip()
        if not name:
            return None
        if len(name) >= 2 and name[0] == name[-1] == '"':
            name = name[1:-1]
        # Blobs written by older pollinators went through a latin-1 round trip
        name = name.replace("â€¦", "…")
        for model in cls:
            if model is not cls.UNKNOWN and model.value == name:
                return model
        return cls.UNKNOWN


@dataclass(frozen=True)
class PolledEvolution:
    """
    One evolution (image) selected from a pollen's output folder

    Attributes:
        ref: Content hash of the file
        name: File name inside the output folder, e.g. `progress_00005.jpg`
        size: Size in bytes as reported by the node
    """
    ref: str
    name: str
    size: int

    @classmethod
    def from_link(cls, link: dict) -> 'PolledEvolution':
        """Build from a `Links` entry of a `file/ls` response"""
        return cls(
            ref=link['Hash'],
            name=link['Name'],
            size=int(link.get('Size', 0))
        )


@dataclass(frozen=True)
class PollenEvent:
    """
    A classified message, ready to be applied to the registry

    Attributes:
        topic: Topic the message arrived on
        ref: Content hash carried by the message (the current iteration)
        model_type: Model metadata, when it was fetched for this event
        text_input: Prompt metadata, when it was fetched for this event
        metadata_fetched: The metadata lookup ran for this event, even if it
            found nothing
    """
    topic: Topic
    ref: str
    model_type: Optional[Model] = None
    text_input: Optional[str] = None
    metadata_fetched: bool = False


@dataclass
class PollenInfo:
    """
    Everything known about one tracked pollen

    Attributes:
        id: Stable identifier, the hash of the pollen's input
        topic: Topic of the last message seen for this pollen
        current_iteration_ref: Content hash of the last message seen
        status: Lifecycle state
        model_type: Model metadata, None until resolved
        text_input: Prompt metadata, None until resolved
        last_polled_evolution: Evolution most recently saved to storage
        metadata_fetched: Metadata was looked up once; missing files stay None
    """
    id: str
    topic: Topic
    current_iteration_ref: str
    status: PollenStatus
    model_type: Optional[Model] = None
    text_input: Optional[str] = None
    last_polled_evolution: Optional[PolledEvolution] = None
    metadata_fetched: bool = False

    @property
    def has_metadata(self) -> bool:
        return self.metadata_fetched
