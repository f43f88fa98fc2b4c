"""
Message Source.

Merges the `processing_pollen` and `done_pollen` subscriptions into a single
stream of decoded messages:
- Order is kept within one subscription, never across the two
- Payloads are base64 decoded; a payload that cannot be decoded ends the run
- Heartbeat messages are dropped before they are classified
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Protocol, Sequence

import httpx

from pollen_wall.config import DONE_TOPIC, HEARTBEAT, PROCESSING_TOPIC
from pollen_wall.exceptions import IpfsApiError
from pollen_wall.models.message import PubsubMessage
from pollen_wall.models.pollen import Topic

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    def pubsub_sub(self, topic: str) -> AsyncIterator[dict]:
        ...


@dataclass(frozen=True)
class DecodedMessage:
    """A pubsub message whose payload has been decoded to text"""
    text: str
    topic_ids: List[str]

    @property
    def topic(self) -> Topic:
        return classify_topic(self.topic_ids)


def classify_topic(topic_ids: Sequence[str]) -> Topic:
    """Classify a message by the first channel it was published on."""
    if not topic_ids:
        return Topic.UNKNOWN
    return Topic.from_channel(topic_ids[0])


def is_heartbeat(text: str) -> bool:
    return HEARTBEAT in text


class MessageSource:
    """
    Lazy, unbounded stream of decoded messages from several topics.

    Each subscription is read by its own task and pushed onto a shared queue.
    A subscription that ends or fails is logged and opened again after
    `resubscribe_delay` seconds (None disables this and lets it end).
    """

    def __init__(
        self,
        client: Subscriber,
        topics: Sequence[str] = (DONE_TOPIC, PROCESSING_TOPIC),
        resubscribe_delay: Optional[float] = 5.0
    ):
        self.client = client
        self.topics = list(topics)
        self.resubscribe_delay = resubscribe_delay
        self._queue: asyncio.Queue = asyncio.Queue()
        self._readers: List[asyncio.Task] = []
        self._consumed = False

    async def _read(self, topic: str):
        """Pump one subscription into the shared queue."""
        while True:
            try:
                async for raw in self.client.pubsub_sub(topic):
                    try:
                        message = PubsubMessage.from_dict(raw)
                    except (KeyError, TypeError, ValueError) as e:
                        logger.error(f"Malformed message on {topic}: {e!r}")
                        continue
                    await self._queue.put(message)
                logger.warning(f"Subscription to {topic} ended")
            except (httpx.HTTPError, IpfsApiError) as e:
                logger.error(f"Pubsub error on {topic}: {e}")

            if self.resubscribe_delay is None:
                break
            await asyncio.sleep(self.resubscribe_delay)
            logger.info(f"Resubscribing to {topic}")

    async def messages(self) -> AsyncIterator[DecodedMessage]:
        """
        Yield decoded, non-heartbeat messages in arrival order.

        Can only be consumed once.

        Raises:
            MessageDecodeError: A payload is not base64 encoded UTF-8
        """
        if self._consumed:
            raise RuntimeError("MessageSource can only be consumed once")
        self._consumed = True

        self._readers = [
            asyncio.create_task(self._read(topic), name=f"pubsub-{topic}")
            for topic in self.topics
        ]
        done_marker = object()
        watcher = asyncio.create_task(self._signal_when_readers_end(done_marker))
        try:
            while True:
                message = await self._queue.get()
                if message is done_marker:
                    return
                text = message.decode()
                if is_heartbeat(text):
                    logger.debug(f"Heartbeat on {message.channel}")
                    continue
                yield DecodedMessage(text=text.strip(), topic_ids=message.topic_ids)
        finally:
            watcher.cancel()
            await self.close()

    async def _signal_when_readers_end(self, marker: object):
        results = await asyncio.gather(*self._readers, return_exceptions=True)
        for topic, result in zip(self.topics, results):
            if isinstance(result, Exception):
                logger.error(f"Reader for {topic} crashed: {result!r}")
        await self._queue.put(marker)

    async def close(self):
        """Stop reading the subscriptions."""
        for reader in self._readers:
            reader.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._readers = []
