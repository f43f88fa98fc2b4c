"""
IPFS RPC Client.

Thin async wrapper over the node's HTTP RPC API (`/api/v0/...`). Only the
calls the watcher needs are exposed: pubsub subscribe/publish, block stat,
file ls, cat and get.
"""
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from pollen_wall.exceptions import IpfsApiError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v0"


def multiaddr_to_url(address: str) -> str:
    """
    Convert a node multiaddr to the base URL of its RPC API.

    Accepts `/ip4/<host>/tcp/<port>` style addresses (ip4, ip6, dns, dns4,
    dns6, optionally followed by `/http` or `/https`) and plain URLs.

    Raises:
        ValueError: The address is not understood
    """
    if address.startswith(("http://", "https://")):
        return address.rstrip("/")

    parts = [p for p in address.split("/") if p]
    if len(parts) < 4 or parts[2] != "tcp":
        raise ValueError(f"Unsupported multiaddr: {address}")

    proto, host, _, port = parts[:4]
    if proto not in ("ip4", "ip6", "dns", "dns4", "dns6"):
        raise ValueError(f"Unsupported multiaddr protocol '{proto}' in {address}")
    if not port.isdigit():
        raise ValueError(f"Invalid port '{port}' in {address}")

    scheme = "https" if "https" in parts[4:] else "http"
    if proto == "ip6":
        host = f"[{host}]"
    return f"{scheme}://{host}:{port}"


class IpfsClient:
    """
    Async client for the IPFS RPC API.

    Streaming calls (`pubsub_sub`, `get`) have no read timeout; every other
    call uses `request_timeout`.
    """

    def __init__(
        self,
        address: str,
        request_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = multiaddr_to_url(address)
        self.request_timeout = request_timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url + API_PREFIX,
            timeout=httpx.Timeout(request_timeout),
            transport=transport
        )
        logger.info(f"Created IPFS client for {self.base_url}")

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> 'IpfsClient':
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    @staticmethod
    def _raise_for_error(response: httpx.Response, path: str, body: Optional[bytes] = None):
        """Turn an error answer of the node into IpfsApiError."""
        if response.status_code < 400:
            return
        raw = body if body is not None else response.content
        message = raw.decode("utf-8", errors="replace")
        try:
            message = json.loads(message).get("Message", message)
        except (ValueError, AttributeError):
            pass
        raise IpfsApiError(
            f"{path} failed ({response.status_code}): {message}",
            path=path,
            context={'status': response.status_code}
        )

    async def _post(self, path: str, args: List[str]) -> httpx.Response:
        response = await self._client.post(path, params=[("arg", a) for a in args])
        self._raise_for_error(response, path)
        return response

    async def _post_json(self, path: str, *args: str) -> Dict[str, Any]:
        response = await self._post(path, list(args))
        try:
            body = response.json()
        except ValueError as e:
            raise IpfsApiError(
                f"{path} answered with a body that is not JSON: {e}",
                path=path,
                context={'status': response.status_code}
            ) from e
        if not isinstance(body, dict):
            raise IpfsApiError(
                f"{path} answered with {type(body).__name__}, expected an object",
                path=path,
                context={'status': response.status_code}
            )
        return body

    # =========================================================================
    # Lookups
    # =========================================================================

    async def block_stat(self, path: str) -> Dict[str, Any]:
        """`block/stat`: returns `{"Key": ..., "Size": ...}`"""
        return await self._post_json("/block/stat", path)

    async def file_ls(self, path: str) -> Dict[str, Any]:
        """`file/ls`: returns `{"Arguments": {...}, "Objects": {hash: {"Links": [...]}}}`"""
        return await self._post_json("/file/ls", path)

    async def cat(self, path: str) -> bytes:
        """`cat`: returns the whole content of a (small) file"""
        response = await self._post("/cat", [path])
        return response.content

    async def get(self, ref: str) -> AsyncIterator[bytes]:
        """
        `get`: stream a file as the node sends it.

        The stream is a tar archive, so the file content is preceded by
        a 512 byte header.
        """
        async with self._client.stream(
            "POST", "/get", params={"arg": ref}, timeout=httpx.Timeout(self.request_timeout, read=None)
        ) as response:
            if response.status_code >= 400:
                self._raise_for_error(response, "/get", await response.aread())
            async for chunk in response.aiter_bytes():
                yield chunk

    # =========================================================================
    # Pubsub
    # =========================================================================

    async def pubsub_sub(self, topic: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Subscribe to a topic and yield each message as a dict.

        Lines that are not valid JSON are logged and skipped. The iterator
        ends when the node closes the stream.
        """
        async with self._client.stream(
            "POST", "/pubsub/sub", params={"arg": topic}, timeout=httpx.Timeout(self.request_timeout, read=None)
        ) as response:
            if response.status_code >= 400:
                self._raise_for_error(response, "/pubsub/sub", await response.aread())
            logger.info(f"Subscribed to topic: {topic}")
            async for line in response.aiter_lines():
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to parse message on {topic}: {e}")
                    continue

    async def pubsub_pub(self, topic: str, payload: str):
        """Publish a text payload on a topic."""
        await self._post("/pubsub/pub", [topic, payload])
