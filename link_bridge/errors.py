"""
LinkBridge error types.

Only BindError ever reaches callers of the server; every other error is
scoped to a single connection or message and is logged where it happens.
"""


class LinkBridgeError(Exception):
    """Base class for LinkBridge errors."""


class BindError(LinkBridgeError):
    """The listener could not bind its port (in use, no privilege, invalid)."""

    def __init__(self, message: str, host: str = "", port: object = None):
        super().__init__(message)
        self.host = host
        self.port = port


class HandshakeError(LinkBridgeError):
    """A connection never completed the WebSocket upgrade."""


class SendError(LinkBridgeError):
    """A write to one connection failed."""


class ReceiveError(LinkBridgeError):
    """A read from one connection failed or the peer went away."""


class SerializationError(LinkBridgeError):
    """An outbound message could not be encoded as JSON."""
