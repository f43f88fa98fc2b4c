"""
Mock Pollen Producer

Simulates pollinators announcing pollens on the IPFS node.
Useful for running the watcher against a local node without real pollens.
"""

import argparse
import asyncio
import base64
import logging
from typing import List

from pollen_wall.config import DONE_TOPIC, HEARTBEAT, PROCESSING_TOPIC
from pollen_wall.ipfs import IpfsClient


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def encode_payload(text: str) -> str:
    """Wrap a payload the way pollinators put it on the wire."""
    return base64.b64encode(text.encode('utf-8')).decode('ascii')


class MockPollenProducer:
    """
    Mock producer that publishes pollen iterations on the pubsub topics
    """

    def __init__(self, client: IpfsClient):
        """
        Initialize the mock producer

        Args:
            client: Client of the node to publish through
        """
        self.client = client
        logger.info(f"MockPollenProducer initialized for {client.base_url}")

    async def send(self, topic: str, text: str):
        """
        Publish one message

        Args:
            topic: Pubsub topic to publish to
            text: Payload before encoding (a content hash or the heartbeat)
        """
        await self.client.pubsub_pub(topic, encode_payload(text))
        logger.info(f"Sent {text!r} on {topic}")

    async def send_heartbeat(self, topic: str = PROCESSING_TOPIC):
        await self.send(topic, HEARTBEAT)

    async def send_pollen(self, iterations: List[str], delay: float = 1.0):
        """
        Announce each iteration as processing, then the last one as done

        Args:
            iterations: Content hashes of successive iterations of one pollen
            delay: Seconds between messages
        """
        for ref in iterations:
            await self.send(PROCESSING_TOPIC, ref)
            await self.send_heartbeat()
            await asyncio.sleep(delay)
        await self.send(DONE_TOPIC, iterations[-1])


async def run(address: str, iterations: List[str], delay: float):
    async with IpfsClient(address) as client:
        producer = MockPollenProducer(client)
        try:
            logger.info("Sending test pollen...")
            await producer.send_pollen(iterations, delay=delay)
            logger.info("Test pollen sent successfully")
        except Exception as e:
            logger.error(f"Error sending pollen: {e}", exc_info=True)


def main():
    """
    Example usage: announce the iterations of one pollen
    """
    parser = argparse.ArgumentParser(description='Publish a mock pollen on the pubsub topics')
    parser.add_argument('refs', nargs='+', help='Content hashes of the successive iterations')
    parser.add_argument('--address', default='/ip4/127.0.0.1/tcp/5001', help='IPFS node multiaddr')
    parser.add_argument('--delay', type=float, default=1.0, help='Delay between iterations in seconds')
    args = parser.parse_args()

    asyncio.run(run(args.address, args.refs, args.delay))


if __name__ == "__main__":
    main()
