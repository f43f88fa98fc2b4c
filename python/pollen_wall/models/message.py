"""
Pubsub message model

Represents one JSON line streamed by the node's `pubsub/sub` endpoint.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Dict, List

from pollen_wall.exceptions import MessageDecodeError


@dataclass
class PubsubMessage:
    """
    Raw pubsub message

    Attributes:
        data: Payload as sent on the wire (padded standard base64)
        topic_ids: Channels the message was published to, never empty
        sender: Peer id of the publisher
        seqno: Publisher sequence number
    """
    data: str
    topic_ids: List[str]
    sender: str = ""
    seqno: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PubsubMessage':
        """Parse a decoded JSON line. Raises KeyError/ValueError on malformed input."""
        topic_ids = data['topicIDs']
        if not topic_ids:
            raise ValueError("Pubsub message without topic")
        return cls(
            data=data.get('data') or "",
            topic_ids=list(topic_ids),
            sender=data.get('from', ""),
            seqno=data.get('seqno', ""),
        )

    @property
    def channel(self) -> str:
        """Channel the message is classified by (the first topic)"""
        return self.topic_ids[0]

    def decode(self) -> str:
        """
        Decode the payload to text.

        Raises:
            MessageDecodeError: Payload is not padded base64 of UTF-8 text
        """
        try:
            raw = base64.b64decode(self.data, validate=True)
            return raw.decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise MessageDecodeError(
                f"Undecodable pubsub payload: {e}",
                context={'channel': self.channel, 'seqno': self.seqno}
            ) from e
