"""Custom exceptions for Pollen Wall."""

from typing import Any, Optional


class PollenWallError(Exception):
    """Base exception for Pollen Wall."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class MessageDecodeError(PollenWallError):
    """
    A pubsub payload could not be decoded.

    The node and this client disagree on the wire format, so the run cannot
    continue.
    """

    pass


class IpfsApiError(PollenWallError):
    """The node answered an RPC call with an error."""

    def __init__(
        self,
        message: str,
        path: str,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.path = path


class StorageError(PollenWallError):
    """An evolution could not be written to the storage directory."""

    pass


class ApplyError(PollenWallError):
    """The wallpaper could not be set."""

    pass
